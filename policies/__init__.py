"""policies/ -- Security policy CRUD for SecureWatch.

rules.py validates input, store.py persists policies with their ordered
conditions and actions, resolver.py delegates effective-policy resolution to
the database.

Layer rule: policies/ imports stdlib, third-party libraries and core/ only.
"""

"""auth/ -- Authentication and authorization package for SecureWatch.

Password hashing, server-side sessions, the login rate limiter, the user
store and the FastAPI auth dependencies.

Layer rule: auth/ imports stdlib, third-party libraries and core/. It does
NOT import from policies/ or appsettings/. The only api/ import allowed is
the HTTP error taxonomy (api/errors.py), used by auth/dependencies.py.
"""

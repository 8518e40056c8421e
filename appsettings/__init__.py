"""appsettings/ -- Application settings for SecureWatch.

Typed setting variants, the key/value store and the SMTP connection check.

Layer rule: appsettings/ imports stdlib, third-party libraries and core/ only.
"""

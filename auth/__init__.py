"""auth/ -- Identity, credential and password-recovery package for Passport.

Layer rule: auth/ imports only stdlib + third-party libraries and core/.
It does NOT import from api/ or admin/.
api/, admin/ and main.py import from auth/, not the other way around.
"""

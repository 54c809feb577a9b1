"""auth/ -- Identity, credentials, tokens and permissions for teamauth.

Layer rule: auth/ imports only core/ + stdlib + third-party libraries.
It does NOT import from api/, teams/, or cache/.
api/ and teams/ import from auth/, not the other way around.
"""

"""teams/ -- Team creation and membership management for teamauth.

Layer rule: teams/ imports from auth/ and core/ only.
It does NOT import from api/ or cache/.
"""

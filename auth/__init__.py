"""auth/ -- Credential authentication and session token engine for Assetra.

Layer rule: auth/ imports only stdlib + third-party libraries, plus core/
for TokenConfig.from_settings(). It does NOT import from api/.
api/ and main.py import from auth/, not the other way around.
"""

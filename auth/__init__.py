"""auth/ -- Accounts, one-time codes, and session tokens for AuthGate.

Layer rule: auth/ imports only core/, stdlib, and third-party libraries.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""

"""auth/ -- Identity, credentials, sessions, CSRF tokens and lockout tracking.

Layer rule: auth/ imports from core/ and third-party libraries; the lockout
tracker and provider also use counters.keys for the shared key convention.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""

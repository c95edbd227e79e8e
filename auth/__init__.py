"""auth/ -- Credential authentication and session issuance for the library portal.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/ or web/. The identity cache from cache/ is
injected into AuthenticationService and referenced for typing only.
api/ and web/ import from auth/, not the other way around.
"""

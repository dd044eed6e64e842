"""auth/ -- Principals, credentials and request authentication for TaskNest.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/, workspace/, or audit/.
api/ imports from auth/, not the other way around.
"""

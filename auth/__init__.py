"""auth/ -- Authentication, the user store, and FastAPI guards.

Layer rule: auth/ imports only stdlib, third-party libraries, core/ and rbac/.
It does NOT import from api/ or activity/.
api/ imports from auth/, not the other way around.
"""

"""rbac/ -- Role-based authorization core for the ITAM backend.

Layer rule: rbac/ imports only the standard library.
It does NOT import from api/, auth/, activity/, or core/.
auth/ and api/ import from rbac/, not the other way around. The user store
is reached through the IdentitySource protocol in rbac/reconciler.py.
"""

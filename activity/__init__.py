"""activity/ -- Append-only activity log for role and user mutations.

Layer rule: activity/ imports only stdlib and third-party libraries.
"""

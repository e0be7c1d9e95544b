"""auth/ -- Credential and token lifecycle for Gatehouse.

Layer rule: auth/ imports only stdlib + third-party libraries, plus
auth/dependencies.py which may import fastapi. It does NOT import from api/
or core/. Configuration values are passed in by the caller.
"""

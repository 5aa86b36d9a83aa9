"""auth/ -- Identity and session management for the KM Portal backend.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
auth/dependencies.py is the one module that knows about FastAPI requests.
"""

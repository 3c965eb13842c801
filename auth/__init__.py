"""auth/ -- Authentication and authorization package for SchoolGate.

Credentials, passwords, lockout, session revocation, role scoping and the
login/refresh/logout flows.

Layer rule: auth/ imports only stdlib, third-party libraries and the
SharedCache contract from cache/. It does NOT import from api/ or core/;
settings arrive as constructor arguments. api/ imports from auth/, not the
other way around.
"""

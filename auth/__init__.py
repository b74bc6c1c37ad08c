"""auth/ -- Authentication and device-session core for SessionGuard.

Layer rule: auth/ imports stdlib, third-party libraries, core/, and the
SessionCache adapter from cache/. It does NOT import from api/.
api/ and main.py import from auth/, not the other way around.
"""

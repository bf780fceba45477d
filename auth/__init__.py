"""auth/ -- Studio session codec, cookies, and access policy.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/, web/, or events/.
api/ and web/ import from auth/, not the other way around.
"""

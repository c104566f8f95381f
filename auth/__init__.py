"""auth/ -- Sessions, roles, the local user cache, and the flows that tie them to the remote directory.

Layer rule: auth/ imports from core/, directory/ and third-party libraries.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""

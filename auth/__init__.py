"""auth/ -- Staff authentication, email verification and provisioning for EventDesk.

Layer rule: auth/ imports from core/ and, in engine.py only, the key helpers
in cache/. It does NOT import from api/ or events/.
api/ and events/ import from auth/, not the other way around.
"""

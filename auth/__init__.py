"""auth/ -- Authentication and verification package for ParkingPilot.

Password hashing, bearer tokens, one-time codes, CSRF tokens, rate limiting,
the account repository and the FastAPI guards that compose them.

Layer rule: auth/ imports from core/, kvstore/ and notify/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""

"""
asgi.py -- ASGI entry point for ParkingPilot.

Run with:  uvicorn asgi:app --reload
           uvicorn asgi:app --host 0.0.0.0 --port 8000 --workers 2

With more than one worker set STORE_BACKEND=sqlite so verification codes,
CSRF tokens and auth rate-limit windows are shared between processes.
"""

from api.main import app

__all__ = ["app"]

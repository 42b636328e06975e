"""
api/routes/csrf.py -- Anti-forgery token endpoint.

  GET /api/csrf-token -- issue a CSRF token bound to the caller's bearer token

The client sends the returned value back in the X-CSRF-Token header on every
state-changing authenticated request. Fetching a new token invalidates the
previous one for the same session.
"""

from fastapi import APIRouter, Depends, Request

from api.models import CsrfTokenResponse
from auth.dependencies import authenticate, bearer_token
from auth.models import TokenClaims

router = APIRouter()


@router.get("/csrf-token", response_model=CsrfTokenResponse)
def csrf_token(request: Request, claims: TokenClaims = Depends(authenticate)) -> CsrfTokenResponse:
    token = request.app.state.csrf.issue(bearer_token(request))
    return CsrfTokenResponse(csrf_token=token)

"""
auth/dependencies.py -- FastAPI Depends() guards for authentication.

Two composable guards instead of inline checks in every route:

  authenticate      -- Authorization: Bearer <token> -> TokenClaims.
                       Missing header        -> Unauthorized (401)
                       Any verifier failure  -> TokenError subclass (403)
                       On success the claims are also stored on
                       request.state.claims for middleware and handlers.
  require_role(r)   -- authenticate, then claims.role == r or Forbidden (403).

enforce_auth_rate_limit is the per-client fixed-window budget for sensitive
endpoints; it keys on route path + client address so a burst against login
does not lock the same client out of password reset.

Services are looked up on request.app.state (wired in the app lifespan), so
tests can substitute any of them without patching imports.

Layer rule: auth/dependencies.py may import from fastapi and slowapi because
it is part of the dependency-injection seam, but not from api/.
"""

from __future__ import annotations

from typing import Callable

from fastapi import Depends, Request
from slowapi.util import get_remote_address

from auth.models import TokenClaims
from core.errors import Forbidden, Unauthorized


def bearer_token(request: Request) -> str | None:
    """Return the raw bearer token from the Authorization header, if any."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def authenticate(request: Request) -> TokenClaims:
    """Require a valid bearer token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(claims: TokenClaims = Depends(authenticate)): ...
    """
    token = bearer_token(request)
    if token is None:
        raise Unauthorized()
    claims = request.app.state.tokens.verify(token)
    request.state.claims = claims
    return claims


def require_role(role: str) -> Callable[..., TokenClaims]:
    """Build a guard that admits only tokens carrying the given role."""

    def _guard(claims: TokenClaims = Depends(authenticate)) -> TokenClaims:
        if claims.role != role:
            raise Forbidden(f"{role.capitalize()} access required.")
        return claims

    _guard.__name__ = f"require_{role}"
    return _guard


require_admin = require_role("admin")


def enforce_auth_rate_limit(request: Request) -> None:
    """Count this request against the strict auth budget (RateLimitExceeded -> 429)."""
    identity = f"{request.url.path}:{get_remote_address(request)}"
    request.app.state.auth_limiter.hit(identity)

"""
auth/tokens.py -- Bearer token issuance/verification and opaque token hashing.

Security design decisions:
  JWT: python-jose with a single HMAC algorithm (JWT_ALGORITHM, default HS256).
       The verifier accepts exactly that algorithm. A token whose header names
       any other algorithm -- "none", RS256, a different HS variant -- is
       rejected as an invalid signature before any key is used, which closes
       the classic algorithm-confusion hole.

  Verification is ordered so that only authentic tokens get a precise answer:
         1. header and payload must decode         -> TokenMalformed
         2. header alg must equal JWT_ALGORITHM     -> TokenInvalidSignature
         3. HMAC signature must verify              -> TokenInvalidSignature
         4. exp must be in the future               -> TokenExpired
         5. id / email / role present and typed     -> TokenMissingClaims
       A forged token therefore never learns "expired" vs "valid".

  Expiry is checked against the injected clock rather than inside jose, so
  tests can issue a token and advance time deterministically.

  No revocation list. A token stays valid until exp; session lifetimes
  (7 days, 30 days with remember-me) are the bound on a stolen token.

  Opaque tokens (password reset): secrets.token_urlsafe(32) gives 256 bits of
  entropy. We store HMAC-SHA256(JWT_SECRET, raw) so lookup is a single indexed
  equality and a database leak does not reveal usable tokens.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets

from jose import JWTError, jwt

from auth.models import ROLES, Account, TokenClaims
from core.clock import Clock, system_clock
from core.errors import TokenExpired, TokenInvalidSignature, TokenMalformed, TokenMissingClaims

logger = logging.getLogger("parkingpilot.auth.tokens")


def claims_for(account: Account) -> TokenClaims:
    """Build the identity claims for an account (id, username, email, role)."""
    return TokenClaims(id=account.id, username=account.username, email=account.email, role=account.role)


class TokenService:
    def __init__(self, secret: str, algorithm: str = "HS256", clock: Clock = system_clock) -> None:
        if not secret:
            raise ValueError("A signing secret is required.")
        self._secret = secret
        self.algorithm = algorithm
        self._clock = clock

    # ------------------------------------------------------------------
    # Bearer tokens
    # ------------------------------------------------------------------

    def issue(self, claims: TokenClaims, ttl_seconds: int) -> str:
        """Sign claims into a compact JWT that expires ttl_seconds from now."""
        now = int(self._clock())
        payload = {
            "sub": str(claims.id),
            "id": claims.id,
            "email": claims.email,
            "role": claims.role,
            "iat": now,
            "exp": now + ttl_seconds,
        }
        if claims.username is not None:
            payload["username"] = claims.username
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def verify(self, token: str) -> TokenClaims:
        """Verify a token and return its claims. Raises a TokenError subclass on any failure."""
        if not token:
            raise TokenMalformed()
        try:
            header = jwt.get_unverified_header(token)
            jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise TokenMalformed() from exc

        if header.get("alg") != self.algorithm:
            logger.warning("Rejected token signed with unexpected algorithm")
            raise TokenInvalidSignature()

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise TokenInvalidSignature() from exc

        exp = payload.get("exp")
        if not isinstance(exp, (int, float)) or isinstance(exp, bool):
            raise TokenMissingClaims()
        if self._clock() >= exp:
            raise TokenExpired()

        return _claims_from_payload(payload)

    # ------------------------------------------------------------------
    # Opaque tokens
    # ------------------------------------------------------------------

    @staticmethod
    def generate_opaque_token() -> str:
        return secrets.token_urlsafe(32)

    def hash_opaque_token(self, raw_token: str) -> str:
        """Return HMAC-SHA256(secret, raw_token) as hex."""
        return hmac.new(self._secret.encode(), raw_token.encode(), hashlib.sha256).hexdigest()


def _claims_from_payload(payload: dict) -> TokenClaims:
    user_id = payload.get("id")
    email = payload.get("email")
    role = payload.get("role")
    username = payload.get("username")
    if not isinstance(user_id, int) or isinstance(user_id, bool):
        raise TokenMissingClaims()
    if not isinstance(email, str) or not email:
        raise TokenMissingClaims()
    if role not in ROLES:
        raise TokenMissingClaims()
    if username is not None and not isinstance(username, str):
        raise TokenMissingClaims()
    return TokenClaims(
        id=user_id,
        email=email,
        role=role,
        username=username,
        issued_at=payload.get("iat"),
        expires_at=payload.get("exp"),
    )

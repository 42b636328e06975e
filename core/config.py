"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for ParkingPilot happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved from the environment.

Security notes:
  JWT_SECRET is mandatory in every mode. There is no generated or built-in
  fallback: a missing secret is a hard startup failure, so a misconfigured
  deployment can never issue tokens signed with a guessable key.

  JWT_SECRET shorter than 32 chars is rejected. HMAC signing of tokens and of
  password-reset token hashes both rely on key entropy.

  JWT_ALGORITHM is restricted to the HMAC family. The verifier accepts exactly
  the configured algorithm, never a list, so "none" and asymmetric algorithms
  are always rejected.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
kvstore/ or notify/.
"""

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("parkingpilot.config")

_ALLOWED_ALGORITHMS = ("HS256", "HS384", "HS512")

_DAY = 24 * 60 * 60


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Everything except JWT_SECRET has a default so a development instance only
    needs one variable. The model_validator enforces the secret policy.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    app_name: str = "VNR Parking Pilot"
    frontend_url: str = "http://localhost:5173"

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured"; the validator below
    # refuses to build a Settings object while it is empty.
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    session_token_ttl_seconds: int = Field(default=7 * _DAY, gt=0)
    remember_me_token_ttl_seconds: int = Field(default=30 * _DAY, gt=0)
    reset_token_ttl_seconds: int = Field(default=60 * 60, gt=0)

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    bcrypt_rounds: int = Field(default=10, ge=4, le=31)

    # ------------------------------------------------------------------
    # One-time codes and CSRF
    # ------------------------------------------------------------------

    otp_ttl_seconds: int = Field(default=10 * 60, gt=0)
    otp_length: int = Field(default=6, ge=4, le=10)
    otp_sweep_interval_seconds: int = Field(default=5 * 60, gt=0)
    csrf_capacity: int = Field(default=1000, ge=2)

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    # Fixed-window limit applied to every authentication endpoint.
    auth_rate_limit_max: int = Field(default=5, gt=0)
    auth_rate_limit_window_seconds: int = Field(default=15 * 60, gt=0)
    # slowapi limit string applied to all other traffic.
    general_rate_limit: str = "100/minute"
    rate_limit_storage_uri: str = "memory://"

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    # "memory" keeps OTP codes, CSRF tokens and rate-limit counters in the
    # process. "sqlite" shares them between worker processes on one host.
    store_backend: Literal["memory", "sqlite"] = "memory"
    store_path: str = "parkingpilot_state.db"
    database_url: str = "sqlite:///parkingpilot.db"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_origins: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "https://parking.vjstartup.com",
        "https://dev-parking.vjstartup.com",
    ]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "testserver", "*.vjstartup.com"]

    # ------------------------------------------------------------------
    # Notifications (optional -- empty means the console notifier is used)
    # ------------------------------------------------------------------

    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""
    default_country_code: str = "+91"

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    email_from: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("jwt_algorithm")
    @classmethod
    def validate_algorithm(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in _ALLOWED_ALGORITHMS:
            raise ValueError(f"JWT_ALGORITHM must be one of {', '.join(_ALLOWED_ALGORITHMS)}.")
        return normalized

    @model_validator(mode="after")
    def validate_secret(self) -> "Settings":
        """Refuse to start without a strong signing secret."""
        if not self.jwt_secret:
            raise ValueError(
                "JWT_SECRET is required. Set JWT_SECRET in your environment or .env file "
                "(at least 32 characters)."
            )
        if len(self.jwt_secret) < 32:
            raise ValueError("JWT_SECRET must be at least 32 characters.")
        return self

    @property
    def sms_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_phone_number)

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.email_from)


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()

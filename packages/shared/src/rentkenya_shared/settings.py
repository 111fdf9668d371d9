"""Environment-backed settings for the session core.

Values are read once from the process environment into a Pydantic model.
Nothing here validates that the Supabase credentials are present: each
consumer (auth client, database engine) raises SettingsError when it is
actually constructed without what it needs, so unit tests and tooling can
import everything without a configured project.

Environment variables:
  SUPABASE_URL               Project URL, e.g. https://abc.supabase.co
  SUPABASE_ANON_KEY          Public anon key sent as `apikey` to Supabase Auth
  SUPABASE_JWT_SECRET        Optional; when set, access tokens are verified
  SUPABASE_DB_URL            Direct Postgres connection string (session pooler)
  PROFILE_MAX_ATTEMPTS       Profile reads per identity before giving up (3)
  PROFILE_RETRY_DELAY        Seconds between "not found yet" reads (1.0)
  PROFILE_MAX_RETRY_DELAY    Cap on the error backoff delay (30.0)
  AUTH_STORAGE_KEY           Namespace for the persisted session ("default")
  SIGN_IN_PATH               Where the view gate redirects to ("/signin")
"""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, Field

from rentkenya_shared.errors import SettingsError


class RetryPolicy(BaseModel):
    """Bounded retry policy for profile reconciliation.

    max_attempts counts reads, including the first one.
    """

    max_attempts: int = Field(default=3, ge=1)
    retry_delay: float = Field(default=1.0, ge=0.0)
    max_delay: float = Field(default=30.0, ge=0.0)

    def missing_delay(self) -> float:
        """Fixed wait after a read that found no row."""
        return self.retry_delay

    def backoff_delay(self, failed_reads: int) -> float:
        """Exponential wait after a read that raised.

        failed_reads is the number of reads that failed before the current
        one, so the first error waits retry_delay, the second twice that.
        """
        return min(self.retry_delay * (2**failed_reads), self.max_delay)


class Settings(BaseModel):
    supabase_url: str = ""
    supabase_anon_key: str = ""
    supabase_jwt_secret: str | None = None
    supabase_db_url: str = ""
    profile_max_attempts: int = Field(default=3, ge=1)
    profile_retry_delay: float = Field(default=1.0, ge=0.0)
    profile_max_retry_delay: float = Field(default=30.0, ge=0.0)
    auth_storage_key: str = "default"
    sign_in_path: str = "/signin"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build settings from environment variables (os.environ by default)."""
        env = os.environ if environ is None else environ
        return cls(
            supabase_url=env.get("SUPABASE_URL", "").rstrip("/"),
            supabase_anon_key=env.get("SUPABASE_ANON_KEY", ""),
            supabase_jwt_secret=env.get("SUPABASE_JWT_SECRET") or None,
            supabase_db_url=env.get("SUPABASE_DB_URL", ""),
            profile_max_attempts=_int(env, "PROFILE_MAX_ATTEMPTS", 3),
            profile_retry_delay=_float(env, "PROFILE_RETRY_DELAY", 1.0),
            profile_max_retry_delay=_float(env, "PROFILE_MAX_RETRY_DELAY", 30.0),
            auth_storage_key=env.get("AUTH_STORAGE_KEY", "default"),
            sign_in_path=env.get("SIGN_IN_PATH", "/signin"),
        )

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.profile_max_attempts,
            retry_delay=self.profile_retry_delay,
            max_delay=self.profile_max_retry_delay,
        )


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise SettingsError(f"{name} must be an integer, got {raw!r}") from None


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise SettingsError(f"{name} must be a number, got {raw!r}") from None


# ============================================================================
# Singleton management
# ============================================================================

_settings: Settings | None = None


def get_settings() -> Settings:
    """Return a lazily-loaded Settings singleton read from os.environ."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings: used in tests after patching the environment."""
    global _settings
    _settings = None

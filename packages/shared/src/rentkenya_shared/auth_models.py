"""Auth domain models: the session and user identity issued by Supabase Auth.

The application never mints these: the authentication backend does, and the
session core only holds read-only copies of them. Both models are frozen.
"""

from __future__ import annotations

import time
from enum import StrEnum

from pydantic import BaseModel, ConfigDict


class AuthChangeEvent(StrEnum):
    """Events emitted by the authentication backend on session change."""

    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"


class AuthUser(BaseModel):
    """A signed-in user identity.

    user_id is assigned at account creation and never changes, so it is the
    key the profile store is queried by.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str = ""
    role: str = "authenticated"
    exp: int | None = None


class Session(BaseModel):
    """An authenticated session: bearer tokens plus the user they belong to."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str | None = None
    token_type: str = "bearer"
    expires_at: int | None = None
    user: AuthUser

    @property
    def user_id(self) -> str:
        return self.user.user_id

    def is_expired(self, now: float | None = None, leeway: float = 0.0) -> bool:
        """True once expires_at (minus leeway seconds) is in the past.

        Sessions without an expiry never expire client-side.
        """
        if self.expires_at is None:
            return False
        current = time.time() if now is None else now
        return current >= self.expires_at - leeway


class SignUpResult(BaseModel):
    """What sign-up hands back.

    session is None when the project requires email confirmation before the
    first sign-in.
    """

    user: AuthUser
    session: Session | None = None

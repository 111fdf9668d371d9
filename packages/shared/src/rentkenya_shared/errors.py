"""Error types shared across the auth, data-access, and session packages.

Only failures the caller is expected to act on get their own class. A profile
that simply hasn't propagated yet is not an error: reads return None for it.
"""

from __future__ import annotations


class RentKenyaError(Exception):
    """Base class for all platform errors."""


class SettingsError(RentKenyaError):
    """A required configuration value is missing or malformed."""


class AuthError(RentKenyaError):
    """Sign-in, sign-up, or sign-out was rejected."""


class AuthApiError(AuthError):
    """The authentication backend answered with an error response."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status

    def __str__(self) -> str:
        if self.status is None:
            return self.message
        return f"{self.message} (HTTP {self.status})"


class ProfileStoreError(RentKenyaError):
    """Reading or writing a profile row failed at the database layer."""

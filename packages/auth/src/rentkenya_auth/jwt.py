"""Supabase access-token verification.

The auth client uses this when SUPABASE_JWT_SECRET is configured: the user
identity is then taken from the signed token claims rather than from the
JSON body that came with it.
"""

from __future__ import annotations

import jwt as pyjwt
from rentkenya_shared.auth_models import AuthUser


def verify_token(token: str, jwt_secret: str, leeway: float = 0.0) -> AuthUser:
    """Decode and validate a Supabase access token.

    Args:
        token: The raw JWT (the session's access_token).
        jwt_secret: The project's JWT secret (Settings → API → JWT Secret).
        leeway: Seconds of clock skew tolerated on the exp claim.

    Returns:
        AuthUser with user_id, email, role, and expiry.

    Raises:
        pyjwt.ExpiredSignatureError: Token has expired.
        pyjwt.InvalidSignatureError: Signature doesn't match the secret.
        pyjwt.MissingRequiredClaimError: exp or sub is absent.
        pyjwt.DecodeError: Malformed token.
    """
    payload = pyjwt.decode(
        token,
        jwt_secret,
        algorithms=["HS256"],
        audience="authenticated",
        leeway=leeway,
        options={"require": ["exp", "sub"]},
    )

    return AuthUser(
        user_id=payload["sub"],
        email=payload.get("email", ""),
        role=payload.get("role", "authenticated"),
        exp=payload["exp"],
    )


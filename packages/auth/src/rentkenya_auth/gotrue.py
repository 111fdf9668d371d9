"""Supabase Auth (GoTrue) client: the authentication backend of the session core.

Implements the backend contract the AuthProvider consumes:

  get_current_session()               → Session | None
  on_session_change(callback)         → Subscription
  sign_in_with_password(email, pw)    → Session
  sign_up(email, pw)                  → SignUpResult
  sign_out()                          → None

Cross-cutting behavior follows the source connectors:

  - One lazily-created httpx.AsyncClient per instance, closed with close()
  - Retry with exponential backoff via tenacity, for transport errors only.
    An HTTP error response is an answer, not a transient failure, and is
    raised as AuthApiError without retrying.
  - The current session is persisted through SessionStorage, so a process
    that restarts while signed in finds the session on the eager read.

Session-change callbacks are invoked synchronously, in registration order,
at the point the state change happens. Every caller therefore sees events in
exactly the order the backend produced them.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

import httpx
import jwt as pyjwt
from rentkenya_shared.auth_models import AuthChangeEvent, AuthUser, Session, SignUpResult
from rentkenya_shared.errors import AuthApiError, AuthError, SettingsError
from rentkenya_shared.settings import Settings, get_settings
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from rentkenya_auth.jwt import verify_token
from rentkenya_auth.storage import SessionStorage, get_client

logger = logging.getLogger(__name__)

SessionChangeCallback = Callable[[AuthChangeEvent, Session | None], None]

# Refresh a stored session this many seconds before it actually expires.
EXPIRY_MARGIN = 10

# Logout responses that mean the token is already unusable server-side.
_ALREADY_SIGNED_OUT = {401, 403, 404}


class Subscription:
    """Handle returned by on_session_change; unsubscribe() stops delivery."""

    def __init__(self, listeners: list[SessionChangeCallback], callback: SessionChangeCallback):
        self._listeners = listeners
        self.callback = callback

    @property
    def active(self) -> bool:
        return self.callback in self._listeners

    def unsubscribe(self) -> None:
        if self.callback in self._listeners:
            self._listeners.remove(self.callback)


class GoTrueClient:
    """Async client for a Supabase project's /auth/v1 endpoints."""

    def __init__(
        self,
        url: str,
        anon_key: str,
        storage: SessionStorage,
        jwt_secret: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        if not url:
            raise SettingsError("SUPABASE_URL is not set.")
        if not anon_key:
            raise SettingsError("SUPABASE_ANON_KEY is not set.")
        self.url = url.rstrip("/")
        self.anon_key = anon_key
        self.jwt_secret = jwt_secret
        self.timeout = timeout
        self._storage = storage
        self._listeners: list[SessionChangeCallback] = []
        self._client: httpx.AsyncClient | None = None
        self.request_count: int = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        storage: SessionStorage | None = None,
    ) -> GoTrueClient:
        """Build a client from Settings, persisting sessions in the shared store."""
        settings = settings or get_settings()
        if storage is None:
            storage = SessionStorage(get_client(), storage_key=settings.auth_storage_key)
        return cls(
            url=settings.supabase_url,
            anon_key=settings.supabase_anon_key,
            storage=storage,
            jwt_secret=settings.supabase_jwt_secret,
        )

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client with the project's anon key."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=f"{self.url}/auth/v1",
                headers={
                    "apikey": self.anon_key,
                    "Authorization": f"Bearer {self.anon_key}",
                },
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @retry(
        retry=retry_if_exception_type((httpx.TransportError, httpx.TimeoutException)),
        wait=wait_exponential(multiplier=1, min=1, max=30),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _request(
        self,
        method: str,
        path: str,
        *,
        access_token: str | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send one request, retrying transport failures; raise on error responses."""
        client = await self._get_client()
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else None
        self.request_count += 1
        response = await client.request(method, path, headers=headers, **kwargs)
        if response.is_error:
            raise AuthApiError(_error_message(response), status=response.status_code)
        return response

    # ------------------------------------------------------------------
    # Payload parsing
    # ------------------------------------------------------------------

    def _user_from_payload(self, data: dict[str, Any]) -> AuthUser:
        user_id = data.get("id")
        if not user_id:
            raise AuthError("No user returned from the authentication backend")
        return AuthUser(
            user_id=user_id,
            email=data.get("email") or "",
            role=data.get("role") or "authenticated",
        )

    def _session_from_payload(self, payload: dict[str, Any]) -> Session:
        access_token = payload.get("access_token")
        if not access_token:
            raise AuthError("No session returned from the authentication backend")

        if self.jwt_secret:
            try:
                user = verify_token(access_token, self.jwt_secret)
            except pyjwt.PyJWTError as e:
                raise AuthError(f"Access token failed verification: {e}") from e
        else:
            user = self._user_from_payload(payload.get("user") or {})

        expires_at = payload.get("expires_at")
        if expires_at is None and payload.get("expires_in") is not None:
            expires_at = int(time.time()) + int(payload["expires_in"])

        return Session(
            access_token=access_token,
            refresh_token=payload.get("refresh_token"),
            token_type=payload.get("token_type") or "bearer",
            expires_at=expires_at,
            user=user,
        )

    # ------------------------------------------------------------------
    # Session-change notifications
    # ------------------------------------------------------------------

    def on_session_change(self, callback: SessionChangeCallback) -> Subscription:
        """Register a callback for (event, session) notifications."""
        self._listeners.append(callback)
        return Subscription(self._listeners, callback)

    def _emit(self, event: AuthChangeEvent, session: Session | None) -> None:
        logger.debug(f"Auth event {event} (user={session.user_id if session else None})")
        for callback in list(self._listeners):
            try:
                callback(event, session)
            except Exception:
                logger.exception(f"Session-change listener failed on {event}")

    # ------------------------------------------------------------------
    # Backend operations
    # ------------------------------------------------------------------

    async def get_current_session(self) -> Session | None:
        """Return the persisted session, refreshing it if it has expired.

        A stored session that can no longer be refreshed is cleared and
        reported as a sign-out.
        """
        session = await self._storage.load()
        if session is None:
            return None
        if not session.is_expired(leeway=EXPIRY_MARGIN):
            return session

        if session.refresh_token:
            try:
                return await self.refresh_session(session.refresh_token)
            except (AuthError, httpx.HTTPError) as e:
                logger.warning(f"Stored session for {session.user_id} could not be refreshed: {e}")

        await self._storage.clear()
        self._emit(AuthChangeEvent.SIGNED_OUT, None)
        return None

    async def refresh_session(self, refresh_token: str) -> Session:
        """Exchange a refresh token for a new session (emits TOKEN_REFRESHED)."""
        response = await self._request(
            "POST",
            "/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )
        session = self._session_from_payload(response.json())
        await self._storage.save(session)
        self._emit(AuthChangeEvent.TOKEN_REFRESHED, session)
        return session

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        """Password sign-in. Raises AuthApiError on bad credentials."""
        response = await self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        session = self._session_from_payload(response.json())
        await self._storage.save(session)
        logger.info(f"Signed in {session.user.email or session.user_id}")
        self._emit(AuthChangeEvent.SIGNED_IN, session)
        return session

    async def sign_up(self, email: str, password: str) -> SignUpResult:
        """Create an account.

        When the project auto-confirms, the response carries a session and a
        SIGNED_IN notification follows. Otherwise only the user comes back.
        """
        response = await self._request(
            "POST",
            "/signup",
            json={"email": email, "password": password},
        )
        payload = response.json()

        if payload.get("access_token"):
            session = self._session_from_payload(payload)
            await self._storage.save(session)
            logger.info(f"Signed up and signed in {email} ({session.user_id})")
            self._emit(AuthChangeEvent.SIGNED_IN, session)
            return SignUpResult(user=session.user, session=session)

        user = self._user_from_payload(payload.get("user") or payload)
        logger.info(f"Signed up {email} ({user.user_id}); awaiting confirmation")
        return SignUpResult(user=user, session=None)

    async def sign_out(self) -> None:
        """Revoke the session remotely and forget it locally.

        The local sign-out (storage cleared, SIGNED_OUT emitted) always
        happens. A remote failure is raised afterwards unless it only says
        the token was already invalid.
        """
        session = await self._storage.load()
        error: Exception | None = None

        if session is not None:
            try:
                await self._request("POST", "/logout", access_token=session.access_token)
            except AuthApiError as e:
                if e.status not in _ALREADY_SIGNED_OUT:
                    error = e
            except httpx.HTTPError as e:
                error = e

        await self._storage.clear()
        logger.info(f"Signed out {session.user_id if session else '(no session)'}")
        self._emit(AuthChangeEvent.SIGNED_OUT, None)

        if error is not None:
            raise error


def _error_message(response: httpx.Response) -> str:
    """Pull the human-readable message out of a GoTrue error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        for field in ("msg", "error_description", "message", "error"):
            if body.get(field):
                return str(body[field])
    return response.reason_phrase

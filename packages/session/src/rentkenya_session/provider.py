"""AuthProvider: the reactive auth context shared by every protected view.

Owns the current AuthSnapshot and is the only code that replaces it. Three
things drive it:

1. Session-change notifications from the authentication backend, applied in
   delivery order. Before the first one lands, start() does one eager
   get_current_session() so an already-signed-in user doesn't wait for a
   notification that may never come. If a notification beats the eager read,
   the eager result is stale and is dropped.
2. Profile reconciliation: whenever a user identity is present and the
   snapshot is IDLE, read the profile; retry on "no row yet" (fixed delay)
   and on store errors (exponential backoff) until the budget is spent.
   Exhaustion is logged, never raised: views see profile=None.
3. The caller-facing verbs sign_in / sign_up / sign_out / refresh_profile.

All of it runs on one event loop. Retry timers are loop.call_later handles
kept in the snapshot; replacing a snapshot that holds a timer with one that
doesn't cancels it. Reads and timers remember the generation they were
started under and do nothing if it has moved on.

Usage:
    async with AuthProvider.from_settings() as auth:
        with auth_context(auth):
            ...
            use_auth().profile
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Iterator
from contextvars import ContextVar
from typing import Protocol, get_args

from rentkenya_shared.auth_models import AuthChangeEvent, AuthUser, Session, SignUpResult
from rentkenya_shared.errors import AuthError, ProfileStoreError
from rentkenya_shared.profile_models import Profile, ProfileInsert, Role
from rentkenya_shared.settings import RetryPolicy, Settings, get_settings

from rentkenya_session import state
from rentkenya_session.state import AuthSnapshot, ReconcileStatus

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[AuthSnapshot], None]


class Unsubscribe(Protocol):
    def unsubscribe(self) -> None: ...


class AuthBackend(Protocol):
    """What the provider needs from the authentication backend."""

    async def get_current_session(self) -> Session | None: ...

    def on_session_change(
        self, callback: Callable[[AuthChangeEvent, Session | None], None]
    ) -> Unsubscribe: ...

    async def sign_in_with_password(self, email: str, password: str) -> Session: ...

    async def sign_up(self, email: str, password: str) -> SignUpResult: ...

    async def sign_out(self) -> None: ...

    async def close(self) -> None: ...


class ProfileBackend(Protocol):
    """What the provider needs from the profile store."""

    async def read_profile(self, user_id: str) -> Profile | None: ...

    async def insert_profile(self, row: ProfileInsert) -> Profile: ...


class AuthProvider:
    def __init__(
        self,
        backend: AuthBackend,
        store: ProfileBackend,
        policy: RetryPolicy | None = None,
        owns_backend: bool = False,
    ) -> None:
        self._backend = backend
        self._store = store
        self.policy = policy or RetryPolicy()
        self._owns_backend = owns_backend
        self._snapshot = AuthSnapshot()
        self._listeners: list[SnapshotListener] = []
        self._subscription: Unsubscribe | None = None
        self._fetch_task: asyncio.Task[None] | None = None
        self._settled = asyncio.Event()
        self._settled.set()

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> AuthProvider:
        """Wire the Supabase auth client and profile store from Settings."""
        from rentkenya_auth.gotrue import GoTrueClient
        from rentkenya_data_access.profiles import ProfileStore

        settings = settings or get_settings()
        return cls(
            backend=GoTrueClient.from_settings(settings),
            store=ProfileStore(),
            policy=settings.retry_policy(),
            owns_backend=True,
        )

    # ------------------------------------------------------------------
    # Reactive context
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> AuthSnapshot:
        return self._snapshot

    @property
    def session(self) -> Session | None:
        return self._snapshot.session

    @property
    def user(self) -> AuthUser | None:
        return self._snapshot.user

    @property
    def profile(self) -> Profile | None:
        return self._snapshot.profile

    @property
    def loading(self) -> bool:
        return self._snapshot.loading

    @property
    def status(self) -> ReconcileStatus:
        return self._snapshot.status

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Call listener with every new snapshot. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def wait_until_settled(self, timeout: float | None = None) -> AuthSnapshot:
        """Wait until no profile read is in flight or pending, then return the snapshot."""
        await asyncio.wait_for(self._settled.wait(), timeout)
        return self._snapshot

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Subscribe to session changes, then resolve the current session once."""
        if self._subscription is not None:
            return
        self._subscription = self._backend.on_session_change(self._on_session_change)

        session = await self._backend.get_current_session()
        if self._snapshot.resolved:
            logger.debug("Session notification arrived during the initial read; keeping it")
            return
        self._apply_session(session)

    async def stop(self) -> None:
        """Unsubscribe and cancel any pending retry or in-flight read."""
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        if self._snapshot.timer is not None:
            self._snapshot.timer.cancel()
        task, self._fetch_task = self._fetch_task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self._owns_backend:
            await self._backend.close()

    async def __aenter__(self) -> AuthProvider:
        await self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Caller-facing verbs
    # ------------------------------------------------------------------

    async def sign_in(self, email: str, password: str) -> None:
        """Password sign-in. Errors propagate; the notification updates state."""
        await self._backend.sign_in_with_password(email, password)

    async def sign_up(
        self,
        email: str,
        password: str,
        role: Role,
        *,
        first_name: str | None = None,
        last_name: str | None = None,
        phone: str | None = None,
        national_id: str | None = None,
    ) -> Profile:
        """Create the account and its profile row as one operation.

        If the profile insert fails, the new account is signed back out
        before the insert error is raised, so no signed-in user is left
        without a profile. The inserted row is returned but not cached:
        reconciliation picks it up from the session-change notification.
        """
        if role not in get_args(Role):
            raise ValueError(f"role must be one of {get_args(Role)}, got {role!r}")

        result = await self._backend.sign_up(email, password)
        user_id = result.user.user_id
        if not user_id:
            raise AuthError("No user returned from sign up")

        try:
            row = ProfileInsert(
                id=user_id,
                role=role,
                first_name=first_name,
                last_name=last_name,
                phone=phone,
                national_id=national_id,
            )
            profile = await self._store.insert_profile(row)
        except Exception as e:
            logger.warning(f"Profile creation failed for {user_id}, signing out: {e}")
            try:
                await self._backend.sign_out()
            except Exception:
                logger.exception(f"Compensating sign-out failed for {user_id}")
            raise

        self._commit(state.clear_retries(self._snapshot))
        self._reconcile()
        return profile

    async def sign_out(self) -> None:
        """Sign out. The SIGNED_OUT notification clears profile and retries."""
        await self._backend.sign_out()

    async def refresh_profile(self, timeout: float | None = None) -> Profile | None:
        """Re-read the profile for the current identity and wait for the outcome."""
        if self._snapshot.user_id is None:
            return None
        self._cancel_fetch()
        self._commit(state.request_refetch(self._snapshot))
        self._reconcile()
        snapshot = await self.wait_until_settled(timeout)
        return snapshot.profile

    # ------------------------------------------------------------------
    # Session observer
    # ------------------------------------------------------------------

    def _on_session_change(self, event: AuthChangeEvent, session: Session | None) -> None:
        logger.debug(f"Session change {event}: user={session.user_id if session else None}")
        self._apply_session(session)

    def _apply_session(self, session: Session | None) -> None:
        previous = self._snapshot
        self._commit(state.apply_session(previous, session))
        if self._snapshot.generation != previous.generation:
            self._cancel_fetch()
            if previous.user_id is not None:
                logger.debug(f"Identity {previous.user_id} ended; reconciliation reset")
        self._reconcile()

    def _commit(self, snapshot: AuthSnapshot) -> None:
        """Install a snapshot, cancel a timer it dropped, and notify listeners."""
        previous = self._snapshot
        if previous.timer is not None and previous.timer is not snapshot.timer:
            previous.timer.cancel()
        self._snapshot = snapshot

        if snapshot.settled:
            self._settled.set()
        else:
            self._settled.clear()

        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Auth snapshot listener failed")

    # ------------------------------------------------------------------
    # Profile reconciliation
    # ------------------------------------------------------------------

    def _is_current(self, generation: int) -> bool:
        return self._snapshot.generation == generation

    def _reconcile(self) -> None:
        """Start a read if an identity is present and nothing is underway."""
        snapshot = self._snapshot
        if snapshot.user_id is None or snapshot.status is not ReconcileStatus.IDLE:
            return
        self._start_fetch()

    def _start_fetch(self) -> None:
        self._commit(state.begin_fetch(self._snapshot))
        snapshot = self._snapshot
        logger.debug(
            f"Reading profile for {snapshot.user_id} "
            f"(attempt {snapshot.attempt}/{self.policy.max_attempts})"
        )
        self._fetch_task = asyncio.get_running_loop().create_task(
            self._fetch_profile(snapshot.user_id, snapshot.generation)
        )

    def _cancel_fetch(self) -> None:
        task, self._fetch_task = self._fetch_task, None
        if task is not None and not task.done():
            task.cancel()

    async def _fetch_profile(self, user_id: str, generation: int) -> None:
        try:
            profile = await self._store.read_profile(user_id)
        except ProfileStoreError as e:
            if not self._is_current(generation):
                return
            logger.error(f"Error fetching profile for {user_id}: {e}")
            snapshot, delay = state.profile_failed(self._snapshot, self.policy)
        except Exception:
            if not self._is_current(generation):
                return
            logger.exception(f"Unexpected error reading profile for {user_id}")
            snapshot, delay = state.profile_failed(self._snapshot, self.policy)
        else:
            if not self._is_current(generation):
                return
            if profile is not None:
                logger.debug(f"Profile for {user_id} found ({profile.role})")
                self._commit(state.profile_found(self._snapshot, profile))
                return
            snapshot, delay = state.profile_missing(self._snapshot, self.policy)

        self._commit(snapshot)
        if delay is None:
            logger.warning(
                f"Giving up on profile for {user_id} after {snapshot.attempt} reads"
            )
            return
        self._schedule_retry(delay, generation)

    def _schedule_retry(self, delay: float, generation: int) -> None:
        if self._snapshot.timer is not None:
            return
        logger.debug(f"Retrying profile read for {self._snapshot.user_id} in {delay:.2f}s")
        timer = asyncio.get_running_loop().call_later(delay, self._on_retry_due, generation)
        self._commit(state.retry_scheduled(self._snapshot, timer))

    def _on_retry_due(self, generation: int) -> None:
        if not self._is_current(generation):
            return
        if self._snapshot.status is not ReconcileStatus.RETRYING:
            return
        self._start_fetch()


# ============================================================================
# Ambient access
# ============================================================================

_current: ContextVar[AuthProvider | None] = ContextVar("rentkenya_auth_provider", default=None)


@contextlib.contextmanager
def auth_context(provider: AuthProvider) -> Iterator[AuthProvider]:
    """Make provider the one use_auth() returns within this block."""
    token = _current.set(provider)
    try:
        yield provider
    finally:
        _current.reset(token)


def use_auth() -> AuthProvider:
    provider = _current.get()
    if provider is None:
        raise RuntimeError("use_auth must be used within an AuthProvider")
    return provider

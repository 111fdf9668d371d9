"""Test fixtures for the session core.

Provides in-memory stand-ins for both collaborators of the AuthProvider:

  - FakeAuthBackend: accounts, a current session, and synchronous in-order
    session-change notifications, like the real auth client
  - FakeProfileStore: profile rows with per-user "not visible yet" counters,
    queued read errors, and optional gates that hold reads or inserts in flight

The retry policy uses millisecond delays so the state machine runs through
all its states quickly in real time.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from datetime import UTC, datetime

import pytest
from rentkenya_session.provider import AuthProvider
from rentkenya_session.state import ReconcileStatus
from rentkenya_shared.auth_models import AuthChangeEvent, AuthUser, Session, SignUpResult
from rentkenya_shared.errors import AuthApiError, ProfileStoreError
from rentkenya_shared.profile_models import Profile, ProfileInsert
from rentkenya_shared.settings import RetryPolicy

Listener = Callable[[AuthChangeEvent, Session | None], None]


class FakeSubscription:
    def __init__(self, listeners: list[Listener], callback: Listener) -> None:
        self._listeners = listeners
        self._callback = callback

    def unsubscribe(self) -> None:
        if self._callback in self._listeners:
            self._listeners.remove(self._callback)


class FakeAuthBackend:
    """In-memory authentication backend."""

    def __init__(self) -> None:
        self.accounts: dict[str, tuple[str, str]] = {}  # email -> (password, user_id)
        self.session: Session | None = None
        self.listeners: list[Listener] = []
        self.sign_out_calls = 0
        self.sign_out_error: Exception | None = None
        self.emit_on_sign_up = True
        self.initial_gate: asyncio.Event | None = None
        self.closed = False

    def add_account(self, email: str, password: str, user_id: str | None = None) -> str:
        user_id = user_id or str(uuid.uuid4())
        self.accounts[email] = (password, user_id)
        return user_id

    def make_session(self, user_id: str, email: str = "", token: str = "access") -> Session:
        return Session(
            access_token=f"{token}-{user_id}",
            refresh_token=f"refresh-{user_id}",
            expires_at=2_000_000_000,
            user=AuthUser(user_id=user_id, email=email),
        )

    def emit(self, event: AuthChangeEvent, session: Session | None) -> None:
        self.session = session
        for callback in list(self.listeners):
            callback(event, session)

    async def get_current_session(self) -> Session | None:
        if self.initial_gate is not None:
            snapshot = self.session
            await self.initial_gate.wait()
            return snapshot
        return self.session

    def on_session_change(self, callback: Listener) -> FakeSubscription:
        self.listeners.append(callback)
        return FakeSubscription(self.listeners, callback)

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        account = self.accounts.get(email)
        if account is None or account[0] != password:
            raise AuthApiError("Invalid login credentials", status=400)
        session = self.make_session(account[1], email)
        self.emit(AuthChangeEvent.SIGNED_IN, session)
        return session

    async def sign_up(self, email: str, password: str) -> SignUpResult:
        if email in self.accounts:
            raise AuthApiError("User already registered", status=422)
        user_id = self.add_account(email, password)
        if not self.emit_on_sign_up:
            return SignUpResult(user=AuthUser(user_id=user_id, email=email))
        session = self.make_session(user_id, email)
        self.emit(AuthChangeEvent.SIGNED_IN, session)
        return SignUpResult(user=session.user, session=session)

    async def sign_out(self) -> None:
        self.sign_out_calls += 1
        self.emit(AuthChangeEvent.SIGNED_OUT, None)
        if self.sign_out_error is not None:
            raise self.sign_out_error

    async def close(self) -> None:
        self.closed = True


class FakeProfileStore:
    """In-memory profile rows with eventual-consistency knobs."""

    def __init__(self) -> None:
        self.rows: dict[str, Profile] = {}
        self.hidden_reads: dict[str, int] = {}  # user_id -> reads that still miss
        self.read_errors: list[Exception] = []
        self.insert_error: Exception | None = None
        self.insert_hidden_reads = 0
        self.read_gate: asyncio.Event | None = None
        self.insert_gate: asyncio.Event | None = None
        self.reads: list[str] = []
        self.inserts: list[ProfileInsert] = []

    def add(self, user_id: str, role: str = "tenant", hidden_reads: int = 0, **fields) -> Profile:
        profile = Profile(id=user_id, role=role, **fields)
        self.rows[user_id] = profile
        self.hidden_reads[user_id] = hidden_reads
        return profile

    def reads_for(self, user_id: str) -> int:
        return self.reads.count(user_id)

    async def read_profile(self, user_id: str) -> Profile | None:
        self.reads.append(user_id)
        if self.read_gate is not None:
            await self.read_gate.wait()
        if self.read_errors:
            raise self.read_errors.pop(0)
        if self.hidden_reads.get(user_id, 0) > 0:
            self.hidden_reads[user_id] -= 1
            return None
        return self.rows.get(user_id)

    async def insert_profile(self, row: ProfileInsert) -> Profile:
        self.inserts.append(row)
        if self.insert_gate is not None:
            await self.insert_gate.wait()
        if self.insert_error is not None:
            raise self.insert_error
        now = datetime.now(UTC)
        profile = Profile(**{**row.model_dump(), "created_at": now, "updated_at": now})
        self.rows[row.id] = profile
        self.hidden_reads[row.id] = self.insert_hidden_reads
        return profile


@pytest.fixture
def backend() -> FakeAuthBackend:
    return FakeAuthBackend()


@pytest.fixture
def store() -> FakeProfileStore:
    return FakeProfileStore()


@pytest.fixture
def policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, retry_delay=0.01, max_delay=0.05)


@pytest.fixture
async def provider(backend: FakeAuthBackend, store: FakeProfileStore, policy: RetryPolicy):
    """An AuthProvider over the fakes, stopped after the test."""
    auth = AuthProvider(backend, store, policy)
    yield auth
    await auth.stop()


@pytest.fixture
def store_error() -> Callable[[str], ProfileStoreError]:
    return lambda message="connection reset": ProfileStoreError(message)


@pytest.fixture
def wait_for_status():
    """Async helper: wait until the provider's snapshot reaches a status."""

    async def _wait(auth: AuthProvider, status: ReconcileStatus, timeout: float = 1.0) -> None:
        if auth.status is status:
            return
        reached = asyncio.Event()

        def listener(snapshot) -> None:
            if snapshot.status is status:
                reached.set()

        unsubscribe = auth.subscribe(listener)
        try:
            await asyncio.wait_for(reached.wait(), timeout)
        finally:
            unsubscribe()

    return _wait

"""Auth snapshot and the transitions of the profile reconciliation state machine.

Every change to the signed-in state is a pure function from one AuthSnapshot
to the next. The AuthProvider owns the current snapshot, applies these
transitions, and performs the side effects they imply (issuing reads, arming
and cancelling retry timers).

    IDLE ──user present──▶ FETCHING ──row──▶ FOUND
                              │
                    no row / error, attempt < max
                              ▼
                          RETRYING ──delay elapses──▶ FETCHING
                              │
                     attempt == max
                              ▼
                           GAVE_UP

Any state returns to IDLE when the user identity changes or goes away.

Attempt accounting: `attempt` counts reads issued for the current identity
and is incremented when a read starts. After a failed read, the backoff
exponent is the number of reads that failed before it (attempt - 1).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from enum import StrEnum

from rentkenya_shared.auth_models import AuthUser, Session
from rentkenya_shared.profile_models import Profile
from rentkenya_shared.settings import RetryPolicy


class ReconcileStatus(StrEnum):
    IDLE = "idle"
    FETCHING = "fetching"
    FOUND = "found"
    RETRYING = "retrying"
    GAVE_UP = "gave_up"


SETTLED = frozenset({ReconcileStatus.IDLE, ReconcileStatus.FOUND, ReconcileStatus.GAVE_UP})


@dataclass(frozen=True)
class AuthSnapshot:
    """Immutable view of the signed-in state at one point in time.

    generation changes whenever the user identity changes (or a re-fetch is
    requested), so reads and timers started under an older generation can
    tell that their result no longer applies.
    """

    session: Session | None = None
    profile: Profile | None = None
    status: ReconcileStatus = ReconcileStatus.IDLE
    attempt: int = 0
    generation: int = 0
    timer: asyncio.TimerHandle | None = field(default=None, compare=False, repr=False)
    resolved: bool = False

    @property
    def user(self) -> AuthUser | None:
        return self.session.user if self.session else None

    @property
    def user_id(self) -> str | None:
        return self.session.user_id if self.session else None

    @property
    def loading(self) -> bool:
        """True until the first session resolution has landed."""
        return not self.resolved

    @property
    def settled(self) -> bool:
        """True when no read is in flight and no retry is pending."""
        return self.status in SETTLED


def apply_session(snapshot: AuthSnapshot, session: Session | None) -> AuthSnapshot:
    """Install a new session from the backend.

    The same identity keeps its profile and reconciliation progress (a token
    refresh is not a reason to re-read). A different or absent identity starts
    over from IDLE under a new generation.
    """
    new_user_id = session.user_id if session else None
    if new_user_id == snapshot.user_id:
        return replace(snapshot, session=session, resolved=True)
    return AuthSnapshot(session=session, generation=snapshot.generation + 1, resolved=True)


def begin_fetch(snapshot: AuthSnapshot) -> AuthSnapshot:
    return replace(
        snapshot,
        status=ReconcileStatus.FETCHING,
        attempt=snapshot.attempt + 1,
        timer=None,
    )


def profile_found(snapshot: AuthSnapshot, profile: Profile) -> AuthSnapshot:
    return replace(
        snapshot,
        profile=profile,
        status=ReconcileStatus.FOUND,
        attempt=0,
        timer=None,
    )


def profile_missing(
    snapshot: AuthSnapshot, policy: RetryPolicy
) -> tuple[AuthSnapshot, float | None]:
    """The read returned no row. Returns the next snapshot and the retry delay.

    A delay of None means the budget is spent and the snapshot is GAVE_UP.
    """
    if snapshot.attempt >= policy.max_attempts:
        return _give_up(snapshot), None
    return replace(snapshot, status=ReconcileStatus.RETRYING), policy.missing_delay()


def profile_failed(
    snapshot: AuthSnapshot, policy: RetryPolicy
) -> tuple[AuthSnapshot, float | None]:
    """The read raised. Same budget as profile_missing, exponential delay."""
    if snapshot.attempt >= policy.max_attempts:
        return _give_up(snapshot), None
    delay = policy.backoff_delay(max(snapshot.attempt - 1, 0))
    return replace(snapshot, status=ReconcileStatus.RETRYING), delay


def retry_scheduled(snapshot: AuthSnapshot, timer: asyncio.TimerHandle) -> AuthSnapshot:
    return replace(snapshot, timer=timer)


def clear_retries(snapshot: AuthSnapshot) -> AuthSnapshot:
    """Reset the attempt counter without disturbing a reconciliation in progress.

    A GAVE_UP identity goes back to IDLE so it can be reconciled again.
    """
    if snapshot.status is ReconcileStatus.GAVE_UP:
        return replace(snapshot, status=ReconcileStatus.IDLE, attempt=0, timer=None)
    if snapshot.status in (ReconcileStatus.IDLE, ReconcileStatus.FOUND):
        return replace(snapshot, attempt=0)
    return snapshot


def request_refetch(snapshot: AuthSnapshot) -> AuthSnapshot:
    """Restart reconciliation for the current identity.

    The cached profile stays visible until a new row is read. The generation
    bump orphans any read or timer from the previous round.
    """
    if snapshot.user_id is None:
        return snapshot
    return replace(
        snapshot,
        status=ReconcileStatus.IDLE,
        attempt=0,
        timer=None,
        generation=snapshot.generation + 1,
    )


def _give_up(snapshot: AuthSnapshot) -> AuthSnapshot:
    return replace(snapshot, status=ReconcileStatus.GAVE_UP, timer=None)

"""Session-aware view gate.

Decides per navigation whether a protected view renders, shows a loading
placeholder, or redirects to sign-in. The decision depends only on the
session: the profile may still be resolving when the gate admits a user.

Before the first session resolution the answer is always LOADING. A redirect
issued then would bounce an already-signed-in user to the sign-in page while
their stored session is still being read.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import StrEnum
from typing import TypeVar

from pydantic import BaseModel
from rentkenya_shared.settings import get_settings

from rentkenya_session.provider import AuthProvider
from rentkenya_session.state import AuthSnapshot

T = TypeVar("T")


class GateKind(StrEnum):
    LOADING = "loading"
    RENDER = "render"
    REDIRECT = "redirect"


class GateDecision(BaseModel):
    kind: GateKind
    redirect_to: str | None = None

    @property
    def admitted(self) -> bool:
        return self.kind is GateKind.RENDER


def decide(snapshot: AuthSnapshot, sign_in_path: str = "/signin") -> GateDecision:
    """Gate decision for one snapshot."""
    if snapshot.loading:
        return GateDecision(kind=GateKind.LOADING)
    if snapshot.session is not None:
        return GateDecision(kind=GateKind.RENDER)
    return GateDecision(kind=GateKind.REDIRECT, redirect_to=sign_in_path)


class SessionGate:
    """Gate bound to a provider, for wrapping protected views."""

    def __init__(self, provider: AuthProvider, sign_in_path: str | None = None) -> None:
        self.provider = provider
        self.sign_in_path = sign_in_path or get_settings().sign_in_path

    def decide(self) -> GateDecision:
        return decide(self.provider.snapshot, self.sign_in_path)

    def guard(self, render: Callable[[], T]) -> T | GateDecision:
        """Run render() if the session admits it; otherwise return the decision.

        Usage:
            result = gate.guard(lambda: dashboard(use_auth().profile))
            if isinstance(result, GateDecision):
                ...  # show placeholder or navigate to result.redirect_to
        """
        decision = self.decide()
        if not decision.admitted:
            return decision
        return render()

"""Per-session authentication state and the transition function over it.

Every change to a session's flags goes through :func:`transition`, which
takes the current :class:`SessionState` and one :class:`SessionEvent` raised
by the driver and returns the next state. The function has no side effects,
so any event sequence can be replayed against it without a browser.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from typing import Any, Optional


class SessionPhase(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    PENDING = "pending"
    AWAITING_SCAN = "awaiting_scan"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    FAILED = "failed"
    DISCONNECTED = "disconnected"


LIVE_PHASES = frozenset(
    {
        SessionPhase.PENDING,
        SessionPhase.AWAITING_SCAN,
        SessionPhase.AUTHENTICATED,
        SessionPhase.READY,
    }
)


class EventKind(str, enum.Enum):
    QR = "qr"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    AUTH_FAILURE = "auth_failure"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True, slots=True)
class SessionEvent:
    kind: EventKind
    detail: Optional[str] = None


@dataclass(frozen=True, slots=True)
class SessionState:
    client_id: str
    phase: SessionPhase = SessionPhase.PENDING
    authenticated: bool = False
    ready: bool = False
    qr_artifact: Optional[str] = None
    error: Optional[str] = None
    disconnect_reason: Optional[str] = None

    @property
    def is_live(self) -> bool:
        return self.phase in LIVE_PHASES

    def to_status_payload(self) -> dict[str, Any]:
        return {
            "authenticated": self.authenticated,
            "ready": self.ready,
            "error": self.error,
            "state": self.phase.value,
        }

    def to_qr_payload(self) -> dict[str, Any]:
        if self.authenticated:
            return {
                "status": "authenticated",
                "message": "Client is already authenticated. No need for QR code.",
            }
        if self.ready:
            return {
                "status": "ready",
                "message": "Client is ready and authenticated. No need for QR code.",
            }
        if self.error:
            return {
                "status": "error",
                "message": "Authentication error occurred",
                "error": self.error,
            }
        if self.qr_artifact:
            return {"status": "success", "qr": self.qr_artifact}
        return {
            "status": "waiting",
            "message": "QR code not yet available. Please try again in a few seconds.",
        }


def transition(state: SessionState, event: SessionEvent) -> SessionState:
    """Apply one driver event; for ``qr`` the detail is the rendered artifact."""
    kind = event.kind
    if kind is EventKind.QR:
        artifact = event.detail if event.detail is not None else state.qr_artifact
        return replace(
            state,
            phase=SessionPhase.AWAITING_SCAN if artifact else SessionPhase.PENDING,
            authenticated=False,
            ready=False,
            qr_artifact=artifact,
        )
    if kind is EventKind.AUTHENTICATED:
        return replace(
            state,
            phase=SessionPhase.READY if state.ready else SessionPhase.AUTHENTICATED,
            authenticated=True,
            error=None,
            qr_artifact=None,
        )
    if kind is EventKind.READY:
        return replace(state, phase=SessionPhase.READY, ready=True, qr_artifact=None)
    if kind is EventKind.AUTH_FAILURE:
        return replace(
            state,
            phase=SessionPhase.FAILED,
            authenticated=False,
            ready=False,
            error=event.detail or "auth_failure",
        )
    if kind is EventKind.DISCONNECTED:
        return replace(
            state,
            phase=SessionPhase.DISCONNECTED,
            authenticated=False,
            ready=False,
            qr_artifact=None,
            disconnect_reason=event.detail,
        )
    raise ValueError(f"unsupported event: {kind!r}")


__all__ = [
    "SessionPhase",
    "LIVE_PHASES",
    "EventKind",
    "SessionEvent",
    "SessionState",
    "transition",
]

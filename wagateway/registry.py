from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from .driver import SessionDriver
from .errors import (
    AuthError,
    ConflictError,
    NotFoundError,
    NotReadyError,
    TransportError,
)
from .metrics import (
    SEND_TOTAL,
    SESSION_START_FAIL_TOTAL,
    SESSIONS_BY_PHASE,
    record_transition,
)
from .qr import render_qr_data_url
from .state import EventKind, SessionEvent, SessionPhase, SessionState, transition


LOGGER = logging.getLogger("wagateway.registry")

_CHAT_SUFFIXES = ("@c.us", "@g.us")

DriverFactory = Callable[[str, str], SessionDriver]
TransitionObserver = Callable[[str, SessionState, SessionState, SessionEvent], None]


def normalize_recipient(number: str) -> str:
    cleaned = (number or "").strip()
    if cleaned.endswith(_CHAT_SUFFIXES):
        return cleaned
    digits = "".join(ch for ch in cleaned if ch.isdigit())
    return f"{digits or cleaned}@c.us"


@dataclass(slots=True)
class Session:
    client_id: str
    session_dir: str
    driver: SessionDriver
    state: SessionState
    start_task: Optional[asyncio.Task[Any]] = field(default=None, repr=False)
    # replaced driver still awaiting destroy
    retired_driver: Optional[SessionDriver] = field(default=None, repr=False)


class SessionRegistry:
    """Tracks one driver-backed session per client id.

    All mutation happens on the event loop thread: driver callbacks run
    synchronously and :meth:`initialize_client` never awaits before the new
    entry is visible, so the map needs no lock.
    """

    def __init__(
        self,
        driver_factory: DriverFactory,
        *,
        render_qr: Optional[Callable[[str], str]] = None,
        on_transition: Optional[TransitionObserver] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._driver_factory = driver_factory
        self._render_qr = render_qr or render_qr_data_url
        self._on_transition = on_transition or record_transition
        self._log = logger or LOGGER
        self._sessions: Dict[str, Session] = {}

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def initialize_client(self, client_id: str, session_dir: str) -> SessionState:
        previous = self._sessions.get(client_id)
        if previous is not None and previous.state.is_live:
            raise ConflictError(
                f"client {client_id} already has a live session",
                code="session_exists",
            )
        if previous is not None:
            self._sessions.pop(client_id, None)
            self._log.info(
                "stage=session_replace client_id=%s previous=%s",
                client_id,
                previous.state.phase.value,
            )

        driver = self._driver_factory(client_id, session_dir)
        session = Session(
            client_id=client_id,
            session_dir=session_dir,
            driver=driver,
            state=SessionState(client_id=client_id),
            retired_driver=previous.driver if previous else None,
        )
        for kind in EventKind:
            driver.on(kind, functools.partial(self._handle_event, client_id, driver, kind))
        self._sessions[client_id] = session
        session.start_task = asyncio.get_running_loop().create_task(
            self._start_driver(session)
        )
        self._log.info(
            "stage=session_init client_id=%s session_dir=%s", client_id, session_dir
        )
        self._update_metrics()
        return session.state

    async def _start_driver(self, session: Session) -> None:
        await self._retire_previous(session)
        try:
            await session.driver.start()
        except Exception as exc:
            SESSION_START_FAIL_TOTAL.inc()
            self._log.exception(
                "stage=driver_start_failed client_id=%s error=%s", session.client_id, exc
            )
            self._apply(
                session.client_id,
                session.driver,
                SessionEvent(EventKind.AUTH_FAILURE, str(exc) or exc.__class__.__name__),
            )

    async def _retire_previous(self, session: Session) -> None:
        retired = session.retired_driver
        if retired is None:
            return
        await self._destroy_driver(session.client_id, retired)
        session.retired_driver = None

    async def _destroy_driver(self, client_id: str, driver: SessionDriver) -> None:
        try:
            await driver.destroy()
        except Exception:
            self._log.warning(
                "stage=driver_destroy_failed client_id=%s", client_id, exc_info=True
            )

    def _handle_event(
        self, client_id: str, driver: SessionDriver, kind: EventKind, *args: Any
    ) -> None:
        detail = args[0] if args else None
        if kind is EventKind.QR:
            self._log.info("stage=qr_received client_id=%s", client_id)
            if detail:
                try:
                    detail = self._render_qr(str(detail))
                except Exception:
                    self._log.exception("stage=qr_render_failed client_id=%s", client_id)
                    detail = None
            else:
                detail = None
        elif detail is not None and not isinstance(detail, str):
            detail = str(detail)
        self._apply(client_id, driver, SessionEvent(kind, detail))

    def _apply(self, client_id: str, driver: SessionDriver, event: SessionEvent) -> None:
        session = self._sessions.get(client_id)
        if session is None or session.driver is not driver:
            self._log.info(
                "stage=stale_event client_id=%s event=%s", client_id, event.kind.value
            )
            return
        previous = session.state
        current = transition(previous, event)
        session.state = current
        if previous.phase is not current.phase:
            self._log.info(
                "stage=state_transition client_id=%s from=%s to=%s event=%s",
                client_id,
                previous.phase.value,
                current.phase.value,
                event.kind.value,
            )
        if event.kind is EventKind.AUTH_FAILURE:
            self._log.error(
                "stage=auth_failure client_id=%s error=%s", client_id, current.error
            )
        self._on_transition(client_id, previous, current, event)
        self._update_metrics()

    def get_state(self, client_id: str) -> SessionState:
        session = self._sessions.get(client_id)
        if session is None:
            raise NotFoundError("Client not found", code="client_not_found")
        return session.state

    def driver_for(self, client_id: str) -> SessionDriver:
        session = self._sessions.get(client_id)
        if session is None:
            raise NotFoundError("Client not found", code="client_not_found")
        return session.driver

    def get_status(self, client_id: str) -> dict[str, Any]:
        return self.get_state(client_id).to_status_payload()

    def get_qr(self, client_id: str) -> dict[str, Any]:
        return self.get_state(client_id).to_qr_payload()

    async def send_message(self, client_id: str, recipient: str, body: str) -> str:
        session = self._sessions.get(client_id)
        if session is None:
            raise NotFoundError("Client not found", code="client_not_found")
        state = session.state
        if not state.authenticated:
            SEND_TOTAL.labels("not_authenticated").inc()
            raise AuthError(
                "WhatsApp client is not authenticated", code="not_authenticated"
            )
        if not state.ready:
            SEND_TOTAL.labels("not_ready").inc()
            raise NotReadyError("WhatsApp client is authenticated but not ready yet")

        chat_id = normalize_recipient(recipient)
        try:
            message_id = await session.driver.send_message(chat_id, body)
        except TransportError as exc:
            SEND_TOTAL.labels("failed").inc()
            self._log.error(
                "stage=send_fail client_id=%s chat_id=%s error=%s", client_id, chat_id, exc
            )
            raise
        except Exception as exc:
            SEND_TOTAL.labels("failed").inc()
            self._log.exception("stage=send_fail client_id=%s chat_id=%s", client_id, chat_id)
            raise TransportError(str(exc) or exc.__class__.__name__) from exc
        SEND_TOTAL.labels("ok").inc()
        self._log.info(
            "stage=send_ok client_id=%s chat_id=%s message_id=%s",
            client_id,
            chat_id,
            message_id,
        )
        return message_id

    async def teardown(self, client_id: str) -> None:
        session = self._sessions.pop(client_id, None)
        if session is None:
            raise NotFoundError("Client not found", code="client_not_found")
        await self._close_session(session)

    async def shutdown(self) -> None:
        while self._sessions:
            _, session = self._sessions.popitem()
            await self._close_session(session)

    async def _close_session(self, session: Session) -> None:
        task = session.start_task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        # a start task cancelled before it ran never destroyed the replaced driver
        await self._retire_previous(session)
        await self._destroy_driver(session.client_id, session.driver)
        self._log.info("stage=session_teardown client_id=%s", session.client_id)
        self._update_metrics()

    def stats_snapshot(self) -> Dict[str, int]:
        counts = {
            phase.value: 0 for phase in SessionPhase if phase is not SessionPhase.UNINITIALIZED
        }
        for session in self._sessions.values():
            counts[session.state.phase.value] += 1
        return counts

    def _update_metrics(self) -> None:
        for phase, count in self.stats_snapshot().items():
            SESSIONS_BY_PHASE.labels(phase).set(count)


__all__ = ["SessionRegistry", "Session", "normalize_recipient", "DriverFactory"]

"""Session drivers: the per-client objects that own a real WhatsApp-Web login.

The registry only relies on :class:`SessionDriver`: handlers are attached
with :meth:`SessionDriver.on`, the driver is started once, and it raises the
``qr``/``authenticated``/``ready``/``auth_failure``/``disconnected`` events
as the login progresses.

:class:`WawebDriver` delegates the browser work to a whatsapp-web.js sidecar
reachable over HTTP. The sidecar calls back into the gateway webhook, which
hands the payload to :meth:`SessionDriver.dispatch`.
"""
from __future__ import annotations

import contextlib
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

import httpx

from .config import BrowserOptions
from .errors import TransportError
from .state import EventKind


LOGGER = logging.getLogger("wagateway.driver")

EventHandler = Callable[..., None]


class SessionDriver:
    def __init__(self, client_id: str, session_dir: str) -> None:
        self.client_id = client_id
        self.session_dir = session_dir
        self._handlers: Dict[EventKind, List[EventHandler]] = defaultdict(list)

    def on(self, event: str | EventKind, handler: EventHandler) -> None:
        self._handlers[EventKind(event)].append(handler)

    def emit(self, event: str | EventKind, *args: Any) -> None:
        kind = EventKind(event)
        for handler in list(self._handlers.get(kind, ())):
            handler(*args)

    def dispatch(self, event: str, data: Any = None) -> None:
        """Entry point for events that arrive from outside the process."""
        if data is None:
            self.emit(event)
        else:
            self.emit(event, data)

    async def start(self) -> None:
        raise NotImplementedError

    async def send_message(self, chat_id: str, body: str) -> str:
        raise NotImplementedError

    async def destroy(self) -> None:
        raise NotImplementedError


def _extract_message_id(payload: Any) -> str:
    if not isinstance(payload, dict):
        raise TransportError("malformed send response", code="bad_response")
    raw = payload.get("id")
    if isinstance(raw, dict):
        raw = raw.get("_serialized") or raw.get("id")
    if raw is None or not str(raw).strip():
        raise TransportError("send response carried no message id", code="bad_response")
    return str(raw)


class WawebDriver(SessionDriver):
    def __init__(
        self,
        client_id: str,
        session_dir: str,
        *,
        http: httpx.AsyncClient,
        base_url: str,
        options: BrowserOptions,
        webhook_url: Optional[str] = None,
        token: Optional[str] = None,
    ) -> None:
        super().__init__(client_id, session_dir)
        self._http = http
        self._base_url = base_url.rstrip("/")
        self._options = options
        self._webhook_url = webhook_url
        self._token = token

    def _url(self, suffix: str) -> str:
        return f"{self._base_url}/sessions/{self.client_id}{suffix}"

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json; charset=utf-8"}
        if self._token:
            headers["X-Auth-Token"] = self._token
        return headers

    async def start(self) -> None:
        body: dict[str, Any] = {
            "dataPath": self.session_dir,
            "puppeteer": self._options.to_payload(self.session_dir),
        }
        if self._webhook_url:
            body["webhook"] = self._webhook_url
        response = await self._http.post(self._url("/start"), json=body, headers=self._headers())
        response.raise_for_status()
        LOGGER.info("stage=driver_started client_id=%s", self.client_id)

    async def send_message(self, chat_id: str, body: str) -> str:
        try:
            response = await self._http.post(
                self._url("/messages"),
                json={"chatId": chat_id, "body": body},
                headers=self._headers(),
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            detail = exc.response.text.strip() or str(exc)
            raise TransportError(detail, code="send_rejected") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise TransportError(str(exc) or exc.__class__.__name__) from exc
        return _extract_message_id(payload)

    async def destroy(self) -> None:
        with contextlib.suppress(httpx.HTTPError):
            await self._http.post(self._url("/destroy"), json={}, headers=self._headers())
        LOGGER.info("stage=driver_destroyed client_id=%s", self.client_id)


class WawebDriverFactory:
    """Builds one :class:`WawebDriver` per client sharing a single HTTP pool."""

    def __init__(
        self,
        base_url: str,
        options: BrowserOptions,
        *,
        token: Optional[str] = None,
        webhook_base_url: Optional[str] = None,
        timeout: float = 30.0,
    ) -> None:
        self._base_url = base_url
        self._options = options
        self._token = token
        self._webhook_base_url = (webhook_base_url or "").rstrip("/") or None
        self._http = httpx.AsyncClient(timeout=timeout)

    def __call__(self, client_id: str, session_dir: str) -> WawebDriver:
        webhook_url = None
        if self._webhook_base_url:
            webhook_url = f"{self._webhook_base_url}/webhook/waweb/{client_id}"
        return WawebDriver(
            client_id,
            session_dir,
            http=self._http,
            base_url=self._base_url,
            options=self._options,
            webhook_url=webhook_url,
            token=self._token,
        )

    async def aclose(self) -> None:
        await self._http.aclose()


__all__ = ["SessionDriver", "WawebDriver", "WawebDriverFactory", "EventHandler"]

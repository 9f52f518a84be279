from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

ROOT_DIR = Path(__file__).resolve().parents[2]
if str(ROOT_DIR) not in sys.path:  # pragma: no cover - path setup
    sys.path.insert(0, str(ROOT_DIR))

import wagateway.api as gw_api
from wagateway.config import BrowserOptions, GatewayConfig
from wagateway.driver import SessionDriver
from wagateway.errors import ConflictError, StoreError
from wagateway.models import ApiKeyRecord, ClientRecord


ADMIN_KEY = "admin-secret"


class InMemoryStore:
    def __init__(self) -> None:
        self.clients: Dict[str, ClientRecord] = {}
        self.keys: Dict[str, ApiKeyRecord] = {}
        self.unavailable = False
        self.connected = False

    def _check(self) -> None:
        if self.unavailable:
            raise StoreError("connection refused")

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.connected = False

    async def fetch_client(self, client_id: str) -> Optional[ClientRecord]:
        self._check()
        return self.clients.get(client_id)

    async def insert_client(self, client_id: str, session_dir: str) -> ClientRecord:
        self._check()
        if client_id in self.clients:
            raise ConflictError(f"client {client_id} already exists", code="client_exists")
        record = ClientRecord(
            id=len(self.clients) + 1,
            client_id=client_id,
            session_dir=session_dir,
            created_at=datetime.now(timezone.utc),
        )
        self.clients[client_id] = record
        return record

    async def insert_api_key(self, api_key: str, client_pk: int) -> ApiKeyRecord:
        self._check()
        record = ApiKeyRecord(id=len(self.keys) + 1, api_key=api_key, client_id=client_pk)
        self.keys[api_key] = record
        return record

    async def api_key_exists(self, api_key: str) -> bool:
        self._check()
        return api_key in self.keys


class StubDriver(SessionDriver):
    def __init__(self, client_id: str, session_dir: str) -> None:
        super().__init__(client_id, session_dir)
        self.start_calls = 0
        self.destroyed = False
        self.on_destroy: Optional[Callable[[], Awaitable[None]]] = None
        self.start_error: Optional[Exception] = None
        self.send_error: Optional[Exception] = None
        self.sent: List[tuple[str, str]] = []
        self.next_id = "true_15550001111@c.us_3EB0"

    async def start(self) -> None:
        self.start_calls += 1
        if self.start_error is not None:
            raise self.start_error

    async def send_message(self, chat_id: str, body: str) -> str:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((chat_id, body))
        return self.next_id

    async def destroy(self) -> None:
        self.destroyed = True
        if self.on_destroy is not None:
            await self.on_destroy()


class StubDriverFactory:
    def __init__(self) -> None:
        self.drivers: List[StubDriver] = []
        self.start_error: Optional[Exception] = None
        self.closed = False

    def __call__(self, client_id: str, session_dir: str) -> StubDriver:
        driver = StubDriver(client_id, session_dir)
        driver.start_error = self.start_error
        self.drivers.append(driver)
        return driver

    def latest(self, client_id: str) -> StubDriver:
        return [d for d in self.drivers if d.client_id == client_id][-1]

    async def aclose(self) -> None:
        self.closed = True


def fake_render(payload: str) -> str:
    return f"rendered:{payload}"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def driver_factory() -> StubDriverFactory:
    return StubDriverFactory()


@pytest.fixture
def gateway_cfg(tmp_path: Path) -> GatewayConfig:
    return GatewayConfig(
        port=3001,
        admin_api_key=ADMIN_KEY,
        database_url="postgresql://unused",
        db_pool_min=1,
        db_pool_max=2,
        session_base_dir=str(tmp_path),
        session_dir_name=".wwebjs_auth",
        waweb_url="http://waweb.test",
        waweb_token="hook-token",
        waweb_timeout=5.0,
        webhook_base_url="http://gateway.test",
        browser=BrowserOptions(),
    )


@pytest.fixture
def gateway_client(
    monkeypatch: pytest.MonkeyPatch,
    gateway_cfg: GatewayConfig,
    store: InMemoryStore,
    driver_factory: StubDriverFactory,
):
    monkeypatch.setattr(gw_api, "gateway_config", lambda: gateway_cfg)
    monkeypatch.setattr(gw_api, "SessionStore", lambda *args, **kwargs: store)
    monkeypatch.setattr(gw_api, "WawebDriverFactory", lambda *args, **kwargs: driver_factory)
    monkeypatch.setattr("wagateway.registry.render_qr_data_url", fake_render)
    app = gw_api.create_app()
    with TestClient(app) as client:
        yield client, store, driver_factory

from __future__ import annotations

import contextlib
import logging
import secrets
from typing import Any, AsyncIterator, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, ConfigDict, Field

from .config import gateway_config
from .driver import WawebDriverFactory
from .errors import AuthError, GatewayError, NotFoundError, ValidationError
from .keys import KeyAuthority, normalize_client_id
from .paths import resolve_session_dir
from .registry import SessionRegistry
from .store import SessionStore


logger = logging.getLogger("wagateway.api")

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ClientIdBody(_CamelModel):
    client_id: Optional[str] = Field(default=None, alias="clientId")


class SendMessageBody(_CamelModel):
    number: Optional[str] = None
    message: Optional[str] = None


class DriverEventBody(_CamelModel):
    event: Optional[str] = None
    data: Any = None


def create_app() -> FastAPI:
    cfg = gateway_config()
    store = SessionStore(
        cfg.database_url, min_size=cfg.db_pool_min, max_size=cfg.db_pool_max
    )

    def _session_dir(client_id: str):
        return resolve_session_dir(
            client_id, base_dir=cfg.session_base_dir, dir_name=cfg.session_dir_name
        )

    authority = KeyAuthority(store, cfg.admin_api_key, session_dir_resolver=_session_dir)
    driver_factory = WawebDriverFactory(
        cfg.waweb_url,
        cfg.browser,
        token=cfg.waweb_token,
        webhook_base_url=cfg.webhook_base_url,
        timeout=cfg.waweb_timeout,
    )
    registry = SessionRegistry(driver_factory)

    @contextlib.asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        await store.connect()
        if not cfg.waweb_token:
            logger.warning("event=waweb_token_missing driver webhook is disabled")
        logger.info("stage=startup port=%s waweb_url=%s", cfg.port, cfg.waweb_url)
        try:
            yield
        finally:
            await registry.shutdown()
            await driver_factory.aclose()
            await store.close()
            logger.info("stage=shutdown")

    app = FastAPI(title="wagateway", lifespan=lifespan)
    app.state.registry = registry
    app.state.key_authority = authority
    app.state.store = store

    @app.exception_handler(GatewayError)
    async def _gateway_error(request: Request, exc: GatewayError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                "event=request_failed path=%s code=%s error=%s",
                request.url.path,
                exc.code,
                exc.message,
            )
        return JSONResponse(
            exc.to_payload(), status_code=exc.status_code, headers=dict(NO_STORE_HEADERS)
        )

    @app.exception_handler(RequestValidationError)
    async def _request_invalid(request: Request, exc: RequestValidationError) -> JSONResponse:
        error = ValidationError("Malformed request body", code="invalid_body")
        return JSONResponse(
            error.to_payload(), status_code=400, headers=dict(NO_STORE_HEADERS)
        )

    async def require_api_key(request: Request) -> None:
        api_key = request.headers.get("x-api-key")
        if not await authority.validate_api_key(api_key):
            logger.warning("event=api_key_invalid path=%s", request.url.path)
            raise AuthError("Invalid API key", code="invalid_api_key")

    def require_admin_key(request: Request) -> None:
        if not authority.validate_admin_key(request.headers.get("x-admin-key")):
            logger.warning("event=admin_key_invalid path=%s", request.url.path)
            raise AuthError("Invalid admin key", code="invalid_admin_key")

    def require_webhook_token(request: Request) -> None:
        if not cfg.waweb_token:
            logger.warning("event=webhook_rejected reason=token_unset path=%s", request.url.path)
            raise AuthError("Driver webhook is disabled", code="webhook_disabled")
        presented = request.headers.get("X-Auth-Token", "").strip()
        expected = cfg.waweb_token.encode("utf-8")
        if not presented or not secrets.compare_digest(presented.encode("utf-8"), expected):
            raise AuthError("Invalid webhook token", code="invalid_webhook_token")

    @app.post("/admin/create-api-key", dependencies=[Depends(require_admin_key)])
    async def create_api_key(payload: Optional[ClientIdBody] = None):
        payload = payload or ClientIdBody()
        client_id = normalize_client_id(payload.client_id)
        api_key = await authority.generate_api_key(client_id)
        return JSONResponse(
            {"clientId": client_id, "apiKey": api_key}, headers=dict(NO_STORE_HEADERS)
        )

    @app.post("/admin/create-client", dependencies=[Depends(require_admin_key)])
    async def create_client(payload: Optional[ClientIdBody] = None):
        payload = payload or ClientIdBody()
        record = await authority.create_client(payload.client_id)
        return record.to_payload()

    @app.post("/init", dependencies=[Depends(require_api_key)])
    async def init_client(payload: Optional[ClientIdBody] = None):
        payload = payload or ClientIdBody()
        client_id = normalize_client_id(payload.client_id)
        record = await authority.get_client_by_client_id(client_id)
        if record is None:
            raise NotFoundError("Client not registered", code="client_not_registered")
        state = registry.initialize_client(record.client_id, record.session_dir)
        return {
            "clientId": record.client_id,
            "sessionDir": record.session_dir,
            "state": state.phase.value,
        }

    @app.get("/status/{client_id}", dependencies=[Depends(require_api_key)])
    async def status(client_id: str):
        return JSONResponse(registry.get_status(client_id), headers=dict(NO_STORE_HEADERS))

    @app.get("/qr/{client_id}", dependencies=[Depends(require_api_key)])
    async def qr(client_id: str):
        return JSONResponse(registry.get_qr(client_id), headers=dict(NO_STORE_HEADERS))

    @app.post("/sendmessage/{client_id}", dependencies=[Depends(require_api_key)])
    async def send_message(
        client_id: str, payload: Optional[SendMessageBody] = None
    ):
        payload = payload or SendMessageBody()
        registry.get_state(client_id)
        if not payload.number or not payload.message:
            raise ValidationError("Number and message are required", code="fields_required")
        message_id = await registry.send_message(client_id, payload.number, payload.message)
        return {"id": message_id}

    @app.delete("/session/{client_id}", dependencies=[Depends(require_api_key)])
    async def teardown(client_id: str):
        await registry.teardown(client_id)
        return {"clientId": client_id, "removed": True}

    @app.post("/webhook/waweb/{client_id}", dependencies=[Depends(require_webhook_token)])
    async def driver_event(client_id: str, payload: DriverEventBody):
        driver = registry.driver_for(client_id)
        try:
            driver.dispatch(payload.event or "", payload.data)
        except ValueError as exc:
            raise ValidationError(f"Unknown event {payload.event!r}", code="unknown_event") from exc
        logger.debug("event=driver_webhook client_id=%s event=%s", client_id, payload.event)
        return {"ok": True, "state": registry.get_state(client_id).phase.value}

    @app.get("/health")
    async def health():
        return {"ok": True, "sessions": registry.stats_snapshot()}

    @app.get("/metrics")
    async def metrics():
        data = generate_latest()
        return PlainTextResponse(data.decode("utf-8"), media_type=CONTENT_TYPE_LATEST)

    return app


__all__ = ["create_app"]

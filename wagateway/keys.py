"""API key and admin credential checks, plus client provisioning."""
from __future__ import annotations

import logging
import re
import secrets
import uuid
from pathlib import Path
from typing import Callable, Optional, Protocol

from .errors import ValidationError
from .metrics import KEY_VALIDATION_TOTAL
from .models import ApiKeyRecord, ClientRecord
from .paths import resolve_session_dir


logger = logging.getLogger("wagateway.keys")

API_KEY_BYTES = 32
_CLIENT_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


class ClientStore(Protocol):
    async def fetch_client(self, client_id: str) -> ClientRecord | None: ...

    async def insert_client(self, client_id: str, session_dir: str) -> ClientRecord: ...

    async def insert_api_key(self, api_key: str, client_pk: int) -> ApiKeyRecord: ...

    async def api_key_exists(self, api_key: str) -> bool: ...


def normalize_client_id(raw: object) -> str:
    """Return a path-safe client identifier or raise ``ValidationError``."""
    if raw is None:
        raise ValidationError("Client ID is required", code="client_id_required")
    value = str(raw).strip()
    if not value:
        raise ValidationError("Client ID is required", code="client_id_required")
    if value in {".", ".."} or not _CLIENT_ID_RE.match(value):
        raise ValidationError("Client ID is malformed", code="client_id_invalid")
    return value


class KeyAuthority:
    def __init__(
        self,
        store: ClientStore,
        admin_key: str,
        *,
        session_dir_resolver: Optional[Callable[[str], Path]] = None,
    ) -> None:
        self._store = store
        self._admin_key = (admin_key or "").strip()
        self._resolve_dir = session_dir_resolver or resolve_session_dir
        if not self._admin_key:
            logger.warning("event=admin_key_missing admin routes are disabled")

    async def validate_api_key(self, key: str | None) -> bool:
        candidate = (key or "").strip()
        if not candidate:
            KEY_VALIDATION_TOTAL.labels("api", "missing").inc()
            return False
        valid = await self._store.api_key_exists(candidate)
        KEY_VALIDATION_TOTAL.labels("api", "ok" if valid else "invalid").inc()
        return valid

    def validate_admin_key(self, key: str | None) -> bool:
        candidate = (key or "").strip()
        if not self._admin_key or not candidate:
            KEY_VALIDATION_TOTAL.labels("admin", "missing").inc()
            return False
        valid = secrets.compare_digest(candidate.encode("utf-8"), self._admin_key.encode("utf-8"))
        KEY_VALIDATION_TOTAL.labels("admin", "ok" if valid else "invalid").inc()
        return valid

    async def get_client_by_client_id(self, client_id: str) -> ClientRecord | None:
        return await self._store.fetch_client(client_id)

    async def create_client(self, client_id: str | None = None) -> ClientRecord:
        if client_id is None:
            client_id = uuid.uuid4().hex
        else:
            client_id = normalize_client_id(client_id)
        session_dir = self._resolve_dir(client_id)
        record = await self._store.insert_client(client_id, str(session_dir))
        logger.info(
            "event=client_created client_id=%s session_dir=%s",
            record.client_id,
            record.session_dir,
        )
        return record

    async def generate_api_key(self, client_id: str) -> str:
        client_id = normalize_client_id(client_id)
        api_key = secrets.token_hex(API_KEY_BYTES)
        record = await self._store.fetch_client(client_id)
        if record is None:
            record = await self.create_client(client_id)
        await self._store.insert_api_key(api_key, record.id)
        logger.info("event=api_key_issued client_id=%s", client_id)
        return api_key


__all__ = ["KeyAuthority", "ClientStore", "normalize_client_id", "API_KEY_BYTES"]

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(slots=True)
class ClientRecord:
    id: int
    client_id: str
    session_dir: str
    created_at: datetime

    def to_payload(self) -> dict[str, str]:
        return {
            "clientId": self.client_id,
            "sessionDir": self.session_dir,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(slots=True)
class ApiKeyRecord:
    id: int
    api_key: str
    client_id: int

"""Multi-tenant WhatsApp-Web session gateway."""

from .api import create_app
from .registry import SessionRegistry

__all__ = ["create_app", "SessionRegistry"]

"""Executable entrypoint for the gateway service."""

from __future__ import annotations

import uvicorn

from .config import gateway_config, init_logging


def main() -> None:
    init_logging()
    cfg = gateway_config()
    uvicorn.run(
        "wagateway.api:create_app",
        host="0.0.0.0",
        port=cfg.port,
        factory=True,
        workers=1,
    )


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    main()

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path, PurePath, PurePosixPath, PureWindowsPath


LOGGER = logging.getLogger("wagateway.paths")


def _is_windows(platform: str) -> bool:
    return platform.startswith("win")


def session_dir_for(
    client_id: str,
    *,
    base_dir: str = "",
    dir_name: str = ".wwebjs_auth",
    platform: str | None = None,
    cwd: str | None = None,
    home: str | None = None,
) -> PurePath:
    """Compute ``<base>/<dir_name>/<client_id>`` without touching the disk.

    Absolute bases are used as-is, relative bases hang off the working
    directory. An empty base means the home directory on POSIX hosts and the
    working directory on Windows.
    """
    platform = platform or sys.platform
    cwd = cwd if cwd is not None else os.getcwd()
    base_dir = (base_dir or "").strip()

    if _is_windows(platform):
        pure: type[PurePath] = PureWindowsPath
        absolute = ":" in base_dir or base_dir.startswith("\\\\")
        default_root = cwd
    else:
        pure = PurePosixPath
        absolute = base_dir.startswith("/")
        default_root = home if home is not None else str(Path.home())

    if absolute:
        return pure(base_dir, dir_name, client_id)
    if not base_dir:
        return pure(default_root, dir_name, client_id)
    return pure(cwd, base_dir, dir_name, client_id)


def ensure_directory(path: Path) -> Path:
    if path.is_dir():
        return path
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.warning("event=session_dir_create_failed path=%s error=%s", path, exc)
        return path
    LOGGER.info("event=session_dir_created path=%s", path)
    return path


def resolve_session_dir(
    client_id: str,
    *,
    base_dir: str = "",
    dir_name: str = ".wwebjs_auth",
) -> Path:
    path = Path(str(session_dir_for(client_id, base_dir=base_dir, dir_name=dir_name)))
    ensure_directory(path)
    LOGGER.debug("event=session_dir_resolved client_id=%s path=%s", client_id, path)
    return path


__all__ = ["session_dir_for", "ensure_directory", "resolve_session_dir"]

from __future__ import annotations

import os
from pathlib import Path

_DEFAULT_BASE = "/var/lib/zfsrescue"
DEFAULT_RECOVERY_ROOT = "/mnt"
KEYSTORE_RUN_DIR = "/run/keystore"


def _expand(path: str) -> str:
    candidate = Path(path).expanduser()
    try:
        return str(candidate.resolve())
    except FileNotFoundError:
        return str(candidate)


def base_path() -> str:
    """Return the base directory for zfsrescue logs.

    The location can be overridden via the ``ZFSRESCUE_BASE_PATH`` environment
    variable.  Live environments often mount ``/var`` on tmpfs, which is fine:
    the log only has to survive until the operator reads it.
    """

    override = os.environ.get("ZFSRESCUE_BASE_PATH")
    if override:
        return _expand(override)
    return _expand(_DEFAULT_BASE)


def logs_dir() -> str:
    return str(Path(base_path()) / "logs")


def keystore_dir(pool: str) -> str:
    return str(Path(KEYSTORE_RUN_DIR) / pool)


def keystore_zvol(pool: str) -> str:
    return f"/dev/zvol/{pool}/keystore"


def mapper_path(name: str) -> str:
    return f"/dev/mapper/{name}"


def under_root(root: str, rel: str) -> str:
    """Join ``rel`` below ``root`` even when ``rel`` is absolute."""

    return os.path.normpath(os.path.join(root, rel.lstrip("/")))

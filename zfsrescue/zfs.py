"""Typed wrappers over ``zpool`` and ``zfs``.

Only scripted (``-H``) output is parsed: one record per line, fields
separated by a single tab.  Anything else raises :class:`ParseError` rather
than being guessed at.
"""

from __future__ import annotations

import re
from typing import Optional

from .errors import ParseError
from .executil import Result, run, trace

UNSET = ("", "-")
_POOL_LINE_RE = re.compile(r"^\s*pool:\s*(\S+)\s*$")


def split_fields(line: str, count: int) -> list[str]:
    parts = line.rstrip("\n").split("\t")
    if len(parts) != count:
        raise ParseError(f"expected {count} tab-separated fields, got {len(parts)}", raw=line)
    return parts


def _single_names(result: Result, what: str) -> list[str]:
    names: list[str] = []
    for line in result.lines():
        (name,) = split_fields(line, 1)
        name = name.strip()
        if not name or any(ch.isspace() for ch in name):
            raise ParseError(f"malformed {what} name", raw=line)
        names.append(name)
    return names


def imported_pools(dry_run: bool = False) -> list[str]:
    """Names from ``zpool list``; an empty list when none or when zpool fails."""

    res = run(["zpool", "list", "-H", "-o", "name"], check=False, dry_run=dry_run)
    if res.rc != 0 or dry_run:
        return []
    return _single_names(res, "pool")


def is_imported(pool: str, dry_run: bool = False) -> bool:
    return pool in imported_pools(dry_run=dry_run)


def parse_importable(text: str) -> list[str]:
    pools: list[str] = []
    for line in (text or "").splitlines():
        m = _POOL_LINE_RE.match(line)
        if m and m.group(1) not in pools:
            pools.append(m.group(1))
    return pools


def importable_pools(dry_run: bool = False) -> list[str]:
    """Pools ``zpool import`` (no arguments) reports as available for import."""

    res = run(["zpool", "import"], check=False, dry_run=dry_run)
    if dry_run:
        return []
    # zpool prints the listing on stdout; some builds use stderr for "no pools"
    return parse_importable(res.out)


def import_pool(pool: str, dry_run: bool = False) -> Result:
    """Force-import ``pool`` without mounting any dataset."""

    return run(["zpool", "import", "-f", "-N", pool], check=True, dry_run=dry_run)


def export_pool(pool: str, dry_run: bool = False) -> Result:
    return run(["zpool", "export", pool], check=False, dry_run=dry_run)


def get_property(dataset: str, prop: str, dry_run: bool = False) -> Optional[str]:
    """Return the value of ``prop`` or ``None`` when zfs cannot report it."""

    res = run(["zfs", "get", "-H", "-o", "name,property,value", prop, dataset], check=False, dry_run=dry_run)
    if res.rc != 0 or dry_run:
        return None
    lines = res.lines()
    if len(lines) != 1:
        raise ParseError(f"expected one record for {dataset} {prop}", raw=res.out)
    name, got_prop, value = split_fields(lines[0], 3)
    if name != dataset or got_prop != prop:
        raise ParseError(f"unexpected record for {dataset} {prop}", raw=lines[0])
    return value


def keystatus(dataset: str, dry_run: bool = False) -> str:
    value = get_property(dataset, "keystatus", dry_run=dry_run)
    return value if value else "unavailable"


def load_key(pool: str, key_file: str | None = None, dry_run: bool = False) -> Result:
    """Load the wrapping key for ``pool``.

    With a key file the location is passed explicitly; without one every key
    is loaded and zfs prompts on the terminal for passphrases.
    """

    if key_file:
        cmd = ["zfs", "load-key", "-L", f"file://{key_file}", pool]
        return run(cmd, check=True, dry_run=dry_run)
    return run(["zfs", "load-key", "-a"], check=True, dry_run=dry_run, interactive=True)


def load_all_keys(dry_run: bool = False) -> Result:
    return run(["zfs", "load-key", "-a"], check=True, dry_run=dry_run, interactive=True)


def bootfs(pool: str, dry_run: bool = False) -> Optional[str]:
    res = run(["zpool", "get", "-H", "-o", "name,property,value", "bootfs", pool], check=False, dry_run=dry_run)
    if res.rc != 0 or dry_run:
        return None
    lines = res.lines()
    if len(lines) != 1:
        raise ParseError(f"expected one bootfs record for {pool}", raw=res.out)
    name, prop, value = split_fields(lines[0], 3)
    if name != pool or prop != "bootfs":
        raise ParseError(f"unexpected bootfs record for {pool}", raw=lines[0])
    value = value.strip()
    trace("zfs.bootfs", pool=pool, value=value)
    return None if value in UNSET else value


def list_filesystems(pool: str, dry_run: bool = False) -> list[str]:
    """Every non-snapshot dataset below ``pool``, pool itself included."""

    res = run(["zfs", "list", "-H", "-o", "name", "-r", pool], check=False, dry_run=dry_run)
    if res.rc != 0 or dry_run:
        return []
    return [name for name in _single_names(res, "dataset") if "@" not in name]


def set_mountpoint(dataset: str, path: str, dry_run: bool = False) -> Result:
    return run(["zfs", "set", f"mountpoint={path}", dataset], check=True, dry_run=dry_run)


def mount_dataset(dataset: str, dry_run: bool = False) -> Result:
    return run(["zfs", "mount", dataset], check=False, dry_run=dry_run)


def is_mounted(dataset: str, dry_run: bool = False) -> bool:
    return get_property(dataset, "mounted", dry_run=dry_run) == "yes"

from __future__ import annotations

"""Subprocess wrapper, tool checks and JSONL trace logging."""

import datetime as _dt
import json
import os
import shlex
import shutil
import subprocess
import time
from typing import Iterable, Sequence

from .errors import PrerequisiteError
from .paths import logs_dir


LOG_DIRS: list[str] | None = None
LOG_PATH: str | None = None
LOG_NAME = "zfsrescue.jsonl"


def _log_dirs() -> list[str]:
    if LOG_DIRS:
        return list(LOG_DIRS)
    return [
        logs_dir(),
        "/var/log/zfsrescue",
        "/tmp/zfsrescue-logs",
    ]


def _ensure_logger() -> str | None:
    global LOG_PATH
    if LOG_PATH:
        return LOG_PATH
    for d in _log_dirs():
        d_expanded = os.path.expanduser(d)
        try:
            os.makedirs(d_expanded, exist_ok=True)
            LOG_PATH = os.path.join(d_expanded, LOG_NAME)
            return LOG_PATH
        except OSError:
            continue
    LOG_PATH = None
    return None


def resolve_log_path() -> str | None:
    """Return the active log path, creating directories when possible."""

    return _ensure_logger()


class Result:
    def __init__(self, rc: int, out: str, err: str, duration: float):
        self.rc, self.out, self.err, self.duration = rc, out, err, duration

    @property
    def ok(self) -> bool:
        return self.rc == 0

    def lines(self) -> list[str]:
        return [line for line in (self.out or "").splitlines() if line.strip()]

    def __repr__(self) -> str:
        return f"Result(rc={self.rc!r}, out={self.out!r}, err={self.err!r})"


LEVELS = {"TRACE": 10, "INFO": 20, "WARN": 30, "ERROR": 40, "NONE": 100}
LOG_LEVEL = os.environ.get("ZFSRESCUE_LOG_LEVEL", "TRACE").upper()


def _write_jsonl(obj: dict):
    path = _ensure_logger()
    try:
        if path:
            with open(path, "a", encoding="utf-8") as f:
                f.write(json.dumps(obj, default=str) + "\n")
    except OSError:
        pass


def log(level: str, event: str, **fields):
    lvl = LEVELS.get(level.upper(), 100)
    cur = LEVELS.get(LOG_LEVEL, 100)
    if lvl < cur:
        return
    ts = _dt.datetime.now(_dt.timezone.utc).isoformat()
    rec = {"ts": ts, "level": level.upper(), "event": event}
    rec.update(fields)
    _write_jsonl(rec)


def trace(event: str, **fields):
    log("TRACE", event, **fields)


def info(event: str, **fields):
    log("INFO", event, **fields)


def warn(event: str, **fields):
    log("WARN", event, **fields)


def error(event: str, **fields):
    log("ERROR", event, **fields)


def run(
    cmd: Sequence[str],
    check: bool = True,
    dry_run: bool = False,
    timeout: float | None = None,
    env: dict | None = None,
    interactive: bool = False,
) -> Result:
    """Run ``cmd`` and return a :class:`Result`.

    ``check`` marks the command as mandatory: a non-zero exit raises
    :class:`subprocess.CalledProcessError`.  With ``check=False`` the caller
    owns the decision and inspects ``rc``.  ``interactive`` leaves the
    terminal attached so tools like ``zfs load-key`` can prompt.
    """

    cmd = list(cmd)
    trace("exec.start", cmd=cmd, dry_run=dry_run, interactive=interactive)
    if dry_run:
        text = "DRY-RUN: " + " ".join(shlex.quote(c) for c in cmd)
        return Result(0, text, "", 0.0)
    started = time.time()
    env2 = (env or os.environ).copy()
    env2.setdefault("ZFSRESCUE_LOG_LEVEL", LOG_LEVEL)
    if interactive:
        proc = subprocess.run(cmd, timeout=timeout, env=env2)
        out, err = "", ""
    else:
        proc = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout, env=env2)
        out, err = proc.stdout or "", proc.stderr or ""
    dur = time.time() - started
    trace("exec.done", cmd=cmd, rc=proc.returncode, dur=dur, out=out, err=err)
    if check and proc.returncode != 0:
        raise subprocess.CalledProcessError(proc.returncode, cmd, out, err)
    return Result(proc.returncode, out, err, dur)


def which(tool: str) -> str | None:
    return shutil.which(tool)


def require_tools(tools: Iterable[str]) -> dict[str, str]:
    """Return ``{tool: path}`` or raise when any tool is missing from PATH."""

    found: dict[str, str] = {}
    missing: list[str] = []
    for tool in tools:
        path = which(tool)
        if path:
            found[tool] = path
        else:
            missing.append(tool)
    trace("exec.require_tools", found=found, missing=missing)
    if missing:
        raise PrerequisiteError(f"required command(s) not found: {', '.join(missing)}")
    return found


def require_root() -> None:
    if os.geteuid() != 0:
        raise PrerequisiteError("this command must be run as root (use sudo)")


def describe_failure(exc: subprocess.CalledProcessError) -> str:
    msg = (exc.stderr or exc.stdout or "").strip()
    if not msg:
        msg = f"exit status {exc.returncode}"
    cmd = exc.cmd if isinstance(exc.cmd, str) else " ".join(shlex.quote(str(c)) for c in exc.cmd)
    return f"{cmd}: {msg}"


def append_jsonl(path: str, obj: dict):
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(obj, ensure_ascii=False, default=str) + "\n")
    except OSError:
        pass

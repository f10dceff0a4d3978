"""Status output: colored lines for the operator, JSON result records for the log."""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Dict, Optional, TextIO

from .executil import append_jsonl, info, resolve_log_path

RED = "\033[0;31m"
GREEN = "\033[0;32m"
YELLOW = "\033[1;33m"
BLUE = "\033[0;34m"
NC = "\033[0m"

RESULT_CODES: Dict[str, int] = {
    "RECOVERY_OK": 0,
    "UNLOCK_OK": 0,
    "PARTIAL_OK": 0,
    "FAIL_PREREQUISITE": 1,
    "FAIL_NO_POOLS": 1,
    "FAIL_STEP": 1,
    "FAIL_INTERRUPTED": 1,
    "FAIL_UNHANDLED": 1,
}


class Reporter:
    def __init__(self, color: bool = True, stream: Optional[TextIO] = None, json_output: bool = True):
        self.color = color
        self.stream = stream
        self.json_output = json_output

    def _out(self) -> TextIO:
        return self.stream if self.stream is not None else sys.stdout

    def cecho(self, color: str, text: str) -> None:
        if self.color:
            print(f"{color}{text}{NC}", file=self._out(), flush=True)
        else:
            print(text, file=self._out(), flush=True)

    def banner(self, text: str) -> None:
        self.cecho(BLUE, text)

    def step(self, text: str) -> None:
        self.cecho(BLUE, text)
        info("report.step", text=text)

    def ok(self, text: str) -> None:
        self.cecho(GREEN, text)

    def notice(self, text: str) -> None:
        self.cecho(YELLOW, text)
        info("report.notice", text=text)

    def warn(self, text: str) -> None:
        self.cecho(YELLOW, f"Warning: {text}")
        info("report.warn", text=text)

    def fail(self, text: str) -> None:
        self.cecho(RED, text)
        info("report.fail", text=text)

    def tip(self, text: str) -> None:
        self.cecho(BLUE, f"Tip: {text}")

    def plain(self, text: str = "") -> None:
        print(text, file=self._out(), flush=True)


def result_payload(kind: str, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"result": kind, "ts": int(time.time())}
    if extra:
        payload.update(extra)
    log_path = resolve_log_path()
    if log_path:
        payload.setdefault("log_path", log_path)
    return payload


def emit_result(kind: str, extra: Optional[Dict[str, Any]] = None, reporter: Optional[Reporter] = None) -> int:
    """Log the result record, print it as one JSON line and return the exit code."""

    payload = result_payload(kind, extra)
    log_path = payload.get("log_path")
    if log_path:
        append_jsonl(log_path, payload)
    if reporter is None or reporter.json_output:
        out = reporter.stream if reporter is not None and reporter.stream is not None else sys.stdout
        print(json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str), file=out)
    return RESULT_CODES.get(kind, 1)

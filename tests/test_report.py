import io
import json

from zfsrescue import report
from zfsrescue.report import GREEN, NC, RESULT_CODES, Reporter, emit_result, result_payload


def test_cecho_colors_and_plain():
    buf = io.StringIO()
    Reporter(color=True, stream=buf).ok("done")
    assert buf.getvalue() == f"{GREEN}done{NC}\n"

    buf = io.StringIO()
    r = Reporter(color=False, stream=buf)
    r.warn("pool busy")
    r.tip("use rpool")
    r.plain()
    assert buf.getvalue() == "Warning: pool busy\nTip: use rpool\n\n"


def test_result_codes():
    assert RESULT_CODES["RECOVERY_OK"] == 0
    assert RESULT_CODES["PARTIAL_OK"] == 0
    assert all(code == 1 for kind, code in RESULT_CODES.items() if kind.startswith("FAIL_"))


def test_result_payload_includes_log_path():
    payload = result_payload("RECOVERY_OK", {"state": "CleanedUp"})
    assert payload["result"] == "RECOVERY_OK"
    assert payload["state"] == "CleanedUp"
    assert payload["log_path"].endswith("zfsrescue.jsonl")


def test_emit_result_prints_and_logs():
    buf = io.StringIO()
    code = emit_result("FAIL_STEP", {"reason": "boom"}, Reporter(color=False, stream=buf))
    assert code == 1
    printed = json.loads(buf.getvalue().strip())
    assert printed["result"] == "FAIL_STEP"
    assert printed["reason"] == "boom"
    with open(printed["log_path"], encoding="utf-8") as fh:
        logged = [json.loads(line) for line in fh]
    assert any(rec.get("result") == "FAIL_STEP" for rec in logged)


def test_emit_result_quiet_without_json(capsys):
    buf = io.StringIO()
    assert emit_result("UNLOCK_OK", None, Reporter(stream=buf, json_output=False)) == 0
    assert buf.getvalue() == ""


def test_unknown_kind_is_failure(monkeypatch):
    monkeypatch.setattr(report, "resolve_log_path", lambda: None)
    buf = io.StringIO()
    assert emit_result("SOMETHING_ELSE", None, Reporter(stream=buf)) == 1
    assert "log_path" not in json.loads(buf.getvalue())

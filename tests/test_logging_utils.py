import json

from core.logging_utils import log_json


def _last_line(text):
    return json.loads(text.strip().splitlines()[-1])


def test_log_json_writes_one_line_to_stderr(monkeypatch, capsys):
    monkeypatch.delenv("PATCHWRIGHT_LOG_STREAM", raising=False)
    log_json("info", "run_started", goal="make it blue", details={"files": 2})
    entry = _last_line(capsys.readouterr().err)
    assert entry["level"] == "INFO"
    assert entry["event"] == "run_started"
    assert entry["goal"] == "make it blue"
    assert entry["details"] == {"files": 2}
    assert "ts" in entry


def test_log_json_masks_secrets(monkeypatch, capsys):
    monkeypatch.setenv("PATCHWRIGHT_LOG_STREAM", "stdout")
    log_json("WARN", "auth_check", details={"api_key": "sk-secret", "provider": "openai"})
    entry = _last_line(capsys.readouterr().out)
    assert entry["details"] == {"api_key": "[REDACTED]", "provider": "openai"}


def test_log_json_can_be_silenced(monkeypatch, capsys):
    monkeypatch.setenv("PATCHWRIGHT_LOG_STREAM", "off")
    log_json("ERROR", "noisy")
    captured = capsys.readouterr()
    assert captured.out == "" and captured.err == ""

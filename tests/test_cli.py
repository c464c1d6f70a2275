import json
from pathlib import Path

import balquota.cli as cli_module
from balquota.cli import cli


DOCUMENT = {
    "timestamp": "2026-01-01T00:00:00+00:00",
    "baseUrl": "http://127.0.0.1:8317/v0/management",
    "results": [
        {
            "provider": "antigravity",
            "authIndex": "1",
            "label": "a",
            "status": "success",
            "quota": {
                "claude-sonnet-4-5": {"remainingFraction": 0.6},
                "claude-sonnet-4-5-thinking": {"remainingFraction": 0.6},
                "gpt-oss-120b-medium": {"remainingFraction": 0.6},
                "gemini-3-pro-high": {"remainingFraction": 0.2},
            },
        },
        {
            "provider": "gemini-cli",
            "authIndex": "2",
            "label": "b",
            "status": "success",
            "quota": {"buckets": [{"modelId": "gemini-3-pro-preview", "remainingFraction": 0.4}]},
        },
        {"provider": "codex", "authIndex": "3", "label": "c", "status": "error", "error": "HTTP 401"},
    ],
}


def test_balance_reads_saved_document(tmp_path: Path, capsys):
    doc_path = tmp_path / "quota.json"
    doc_path.write_text(json.dumps(DOCUMENT), encoding="utf-8")

    assert cli(["balance", "--input", str(doc_path)]) == 0

    out = json.loads(capsys.readouterr().out)
    assert set(out) == {"gemini-3-pro", "vertex-ai"}
    assert abs(out["gemini-3-pro"] - 0.3) < 1e-9
    assert out["vertex-ai"] == 0.6


def test_balance_writes_output_file(tmp_path: Path):
    doc_path = tmp_path / "quota.json"
    doc_path.write_text(json.dumps({"results": []}), encoding="utf-8")
    out_path = tmp_path / "balanced.json"

    assert cli(["--input", str(doc_path), "--output", str(out_path)]) == 0
    assert json.loads(out_path.read_text(encoding="utf-8")) == {}


def test_balance_without_input_fetches_live(monkeypatch, capsys):
    calls = []

    def fake_fetch(base_url, key, timeout_s):
        calls.append((base_url, key, timeout_s))
        return DOCUMENT

    monkeypatch.setattr(cli_module, "fetch_quota_document", fake_fetch)

    assert cli(["balance", "--key", "sk-1234", "--base-url", "http://proxy/v0/management", "--timeout", "3"]) == 0
    assert calls == [("http://proxy/v0/management", "sk-1234", 3.0)]
    assert "vertex-ai" in json.loads(capsys.readouterr().out)


def test_live_commands_require_a_key(monkeypatch, capsys):
    monkeypatch.delenv("BALQUOTA_MANAGEMENT_KEY", raising=False)

    assert cli(["balance", "--key", ""]) == 1
    assert "Missing management key" in capsys.readouterr().err


def test_fetch_prints_document_and_exits_nonzero_on_account_errors(monkeypatch, capsys):
    monkeypatch.setattr(cli_module, "fetch_quota_document", lambda base_url, key, timeout_s: DOCUMENT)

    assert cli(["fetch", "--key", "sk-1234"]) == 1

    captured = capsys.readouterr()
    assert json.loads(captured.out) == DOCUMENT
    assert "Success: 2, ✗ Errors: 1" in captured.err


def test_fetch_quiet_keeps_stderr_clean(monkeypatch, capsys):
    monkeypatch.setattr(
        cli_module,
        "fetch_quota_document",
        lambda base_url, key, timeout_s: {**DOCUMENT, "results": DOCUMENT["results"][:2]},
    )

    assert cli(["fetch", "-q", "--key", "sk-1234"]) == 0
    assert capsys.readouterr().err == ""


def test_management_api_failure_is_reported(monkeypatch, capsys):
    def boom(base_url, key, timeout_s):
        raise RuntimeError("HTTP 401: invalid management key")

    monkeypatch.setattr(cli_module, "fetch_quota_document", boom)

    assert cli(["balance", "--key", "bad"]) == 1
    assert "Error: HTTP 401: invalid management key" in capsys.readouterr().err


def test_unreadable_input_is_reported(tmp_path: Path, capsys):
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")

    assert cli(["balance", "--input", str(bad)]) == 1
    assert capsys.readouterr().err.startswith("Error:")


def test_fetch_reports_malformed_management_reply(monkeypatch, capsys):
    import balquota.sources.cliproxy as cliproxy

    monkeypatch.setattr(cliproxy.CLIProxyAPIClient, "request", lambda self, method, path, body=None: ["unexpected"])

    assert cli(["fetch", "--key", "k"]) == 1
    assert "Error: Unexpected management API response" in capsys.readouterr().err

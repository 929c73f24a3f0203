import asyncio
import json
import os
import time

import pytest
from click.testing import CliRunner

from mail_gate.cli import main
from mail_gate.history import SqliteHistoryStore


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("GMG_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def db_with_recent_send(tmp_path, monkeypatch):
    db = str(tmp_path / "gate.db")

    async def seed():
        store = SqliteHistoryStore(db)
        await store.init()
        await store.append("203.0.113.7", int(time.time()))

    asyncio.run(seed())
    monkeypatch.setenv("GMG_DB_PATH", db)
    return db


def write_json(tmp_path, data):
    path = tmp_path / "message.json"
    path.write_text(json.dumps(data) if not isinstance(data, str) else data)
    return str(path)


def test_help(runner):
    result = runner.invoke(main, ["--help"])
    assert result.exit_code == 0
    for command in ("serve", "check", "stats", "validate", "sanitize"):
        assert command in result.output


def test_invalid_configuration_exits_2(runner, monkeypatch):
    monkeypatch.setenv("GMG_RATE_PER_MINUTE", "0")
    result = runner.invoke(main, ["check", "203.0.113.7"])
    assert result.exit_code == 2
    assert "Invalid configuration" in result.output


def test_check_allows_fresh_identity(runner):
    result = runner.invoke(main, ["check", "203.0.113.7"])
    assert result.exit_code == 0
    assert "may send" in result.output


def test_check_json(runner):
    result = runner.invoke(main, ["check", "203.0.113.7", "--json"])
    assert result.exit_code == 0
    assert json.loads(result.output)["allowed"] is True


def test_check_denies_after_recent_send(runner, db_with_recent_send):
    result = runner.invoke(main, ["check", "203.0.113.7"])
    assert result.exit_code == 1
    assert "per minute" in result.output


def test_stats_table(runner, db_with_recent_send):
    result = runner.invoke(main, ["stats", "203.0.113.7"])
    assert result.exit_code == 0
    assert "Usage for 203.0.113.7" in result.output
    assert "minute" in result.output


def test_stats_json(runner, db_with_recent_send):
    result = runner.invoke(main, ["stats", "203.0.113.7", "--json"])
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["ip"] == "203.0.113.7"
    assert data["sentLastMinute"] == 1
    assert data["remainingMinute"] == 0


def test_validate_clean_message(runner, tmp_path):
    path = write_json(tmp_path, {"to": "anna@example.com", "subject": "Meeting notes", "body": "See you on Monday."})
    result = runner.invoke(main, ["validate", path])
    assert result.exit_code == 0
    assert "passed" in result.output


def test_validate_reports_violations(runner, tmp_path):
    path = write_json(tmp_path, {"to": "anna@example.com", "subject": "Hi\nBcc: x@example.org", "body": "text"})
    result = runner.invoke(main, ["validate", path, "--json"])
    assert result.exit_code == 1
    data = json.loads(result.output)
    assert data["valid"] is False
    assert "subject" in data["violations"]


def test_validate_uses_configured_whitelist(runner, tmp_path):
    config = tmp_path / "config.ini"
    config.write_text("[validation]\nallowed_domains = example.org\n")
    path = write_json(tmp_path, {"to": "anna@example.com", "subject": "Notes", "body": "text"})
    result = runner.invoke(main, ["--config", str(config), "validate", path])
    assert result.exit_code == 1
    assert "Recipient domain" in result.output


def test_validate_rejects_bad_json(runner, tmp_path):
    result = runner.invoke(main, ["validate", write_json(tmp_path, "{not json")])
    assert result.exit_code == 2
    assert "Invalid JSON" in result.output


def test_validate_rejects_non_object(runner, tmp_path):
    result = runner.invoke(main, ["validate", write_json(tmp_path, [1, 2])])
    assert result.exit_code == 2


def test_sanitize_from_stdin(runner):
    result = runner.invoke(main, ["sanitize", "-"], input="<p>ok</p><script>alert(1)</script>")
    assert result.exit_code == 0
    assert result.output.strip() == "<p>ok</p>"

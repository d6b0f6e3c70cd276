"""Tests for the animus-triggers CLI entry points."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from animus_triggers.cli import app
from animus_triggers.config.schema import StorageSection, TriggersConfig
from animus_triggers.models import (
    Condition,
    ConditionType,
    MatchType,
    Preset,
    Rule,
    WebhookConfig,
)
from animus_triggers.store import SQLiteRuleStore

runner = CliRunner()


def _mock_config_manager(db_path: Path) -> MagicMock:
    """Create a mock ConfigManager pointing the store at *db_path*."""
    mock = MagicMock()
    mock.load.return_value = TriggersConfig(
        storage=StorageSection(backend="sqlite", path=str(db_path))
    )
    mock.exists.return_value = False
    mock.get_config_path.return_value = db_path.parent / "triggers.toml"
    return mock


def _seed(db_path: Path, *rules: Rule) -> None:
    store = SQLiteRuleStore(db_path)
    try:
        for rule in rules:
            asyncio.run(store.create(rule))
    finally:
        store.close()


def _ping_rule() -> Rule:
    return Rule(
        id="r1",
        guild_id="g1",
        name="Ping",
        conditions=[
            Condition(
                type=ConditionType.MESSAGE_CONTENT, match_type=MatchType.EXACTLY, value="ping"
            )
        ],
        presets=[Preset(type="Text", template="pong to {user.name}")],
    )


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "triggers.db"


@pytest.fixture()
def config_manager(db_path: Path):  # type: ignore[no-untyped-def]
    with patch("animus_triggers.cli.ConfigManager", return_value=_mock_config_manager(db_path)):
        yield


# ------------------------------------------------------------------
# No args — should show help
# ------------------------------------------------------------------


class TestNoArgs:
    def test_no_args_shows_help(self) -> None:
        result = runner.invoke(app, [])
        assert result.exit_code in (0, 2)
        assert "Usage" in result.output


# ------------------------------------------------------------------
# rules ...
# ------------------------------------------------------------------


@pytest.mark.usefixtures("config_manager")
class TestRulesCommands:
    def test_list_empty(self) -> None:
        result = runner.invoke(app, ["rules", "list", "g1"])
        assert result.exit_code == 0
        assert "No triggers configured" in result.output

    def test_list_shows_rule(self, db_path: Path) -> None:
        _seed(db_path, _ping_rule())
        result = runner.invoke(app, ["rules", "list", "g1"])
        assert result.exit_code == 0
        assert "Ping" in result.output
        assert "messageCreate" in result.output

    def test_show(self, db_path: Path) -> None:
        _seed(db_path, _ping_rule())
        result = runner.invoke(app, ["rules", "show", "g1", "r1"])
        assert result.exit_code == 0
        assert '"name": "Ping"' in result.output

    def test_show_missing(self) -> None:
        result = runner.invoke(app, ["rules", "show", "g1", "nope"])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_delete(self, db_path: Path) -> None:
        _seed(db_path, _ping_rule())
        result = runner.invoke(app, ["rules", "delete", "g1", "r1"])
        assert result.exit_code == 0
        again = runner.invoke(app, ["rules", "delete", "g1", "r1"])
        assert again.exit_code == 1

    def test_export_to_file_and_import(self, db_path: Path, tmp_path: Path) -> None:
        _seed(db_path, _ping_rule())
        out = tmp_path / "export.json"

        exported = runner.invoke(app, ["rules", "export", "g1", "--output", str(out)])
        assert exported.exit_code == 0
        data = json.loads(out.read_text(encoding="utf-8"))
        assert data["count"] == 1

        imported = runner.invoke(app, ["rules", "import", "g2", str(out)])
        assert imported.exit_code == 0
        assert "Imported" in imported.output

        listed = runner.invoke(app, ["rules", "list", "g2"])
        assert "Ping" in listed.output

    def test_import_unreadable_file(self, tmp_path: Path) -> None:
        bad = tmp_path / "bad.json"
        bad.write_text("{oops", encoding="utf-8")
        result = runner.invoke(app, ["rules", "import", "g1", str(bad)])
        assert result.exit_code == 1


# ------------------------------------------------------------------
# test
# ------------------------------------------------------------------


@pytest.mark.usefixtures("config_manager")
class TestDryRunCommand:
    def _event_file(self, tmp_path: Path, content: str) -> Path:
        path = tmp_path / "event.json"
        event = {
            "message": {
                "id": "m1",
                "content": content,
                "author": {"id": "42", "username": "alice"},
                "channel": {"id": "c1"},
            }
        }
        path.write_text(json.dumps(event), encoding="utf-8")
        return path

    def test_matching_event(self, db_path: Path, tmp_path: Path) -> None:
        _seed(db_path, _ping_rule())
        result = runner.invoke(app, ["test", "g1", "r1", str(self._event_file(tmp_path, "ping"))])
        assert result.exit_code == 0
        assert "pong to alice" in result.output
        assert "1 outbound call(s) recorded" in result.output

    def test_conditions_not_met(self, db_path: Path, tmp_path: Path) -> None:
        _seed(db_path, _ping_rule())
        result = runner.invoke(app, ["test", "g1", "r1", str(self._event_file(tmp_path, "nah"))])
        assert result.exit_code == 0
        assert "would not fire" in result.output

    def test_webhook_preset_is_not_sent(self, db_path: Path, tmp_path: Path) -> None:
        rule = _ping_rule()
        rule.presets = [
            Preset(
                type="Webhook",
                webhook=WebhookConfig(url="https://example.com/hook", body_template="{}"),
            )
        ]
        _seed(db_path, rule)

        with patch("animus_triggers.actions.httpx.AsyncClient") as client_cls:
            result = runner.invoke(
                app, ["test", "g1", "r1", str(self._event_file(tmp_path, "ping"))]
            )

        assert result.exit_code == 0
        client_cls.assert_not_called()
        assert "1 outbound call(s) recorded" in result.output

    def test_missing_rule(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["test", "g1", "r1", str(self._event_file(tmp_path, "ping"))])
        assert result.exit_code == 1


# ------------------------------------------------------------------
# config show
# ------------------------------------------------------------------


@pytest.mark.usefixtures("config_manager")
class TestConfigShow:
    def test_shows_defaults_source(self) -> None:
        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "defaults" in result.output
        assert "max_rules_per_guild" in result.output

"""
tests/unit/test_main.py — Entry point tests

Covers:
  - Argument parsing defaults and overrides
  - bootstrap() applies --base-url / --agent-id overrides and sets up logging
  - bootstrap() exits with code 1 on invalid YAML values or failed validate_all()
"""

from __future__ import annotations

import logging

import pytest
import structlog

from recochat.main import bootstrap, parse_args


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    structlog.reset_defaults()
    logging.basicConfig(handlers=[logging.NullHandler()], force=True)


def _config(tmp_path, body: str = ""):
    path = tmp_path / "config.yaml"
    path.write_text(
        "logging:\n"
        f"  log_dir: {tmp_path / 'logs'}\n"
        "storage:\n"
        f"  path: {tmp_path / 'storage.json'}\n" + body,
        encoding="utf-8",
    )
    return path


class TestParseArgs:
    def test_defaults(self):
        args = parse_args([])
        assert args.config is None
        assert args.log_level is None
        assert args.base_url is None
        assert args.ephemeral is False

    def test_overrides(self):
        args = parse_args(["--base-url", "https://x.test", "--agent-id", "a1",
                           "--log-level", "DEBUG", "--ephemeral"])
        assert args.base_url == "https://x.test"
        assert args.agent_id == "a1"
        assert args.log_level == "DEBUG"
        assert args.ephemeral is True


class TestBootstrap:
    def test_overrides_applied(self, tmp_path):
        cfg = _config(tmp_path)
        settings, log = bootstrap(parse_args(["--config", str(cfg),
                                              "--base-url", "https://cli.test/",
                                              "--agent-id", "cli-agent"]))
        assert settings.service.base_url == "https://cli.test"
        assert settings.agent_id == "cli-agent"
        assert (tmp_path / "logs" / "recochat.log").exists()

    def test_invalid_value_exits(self, tmp_path, capsys):
        cfg = _config(tmp_path, "retry:\n  max_retries: -3\n")
        with pytest.raises(SystemExit) as exc_info:
            bootstrap(parse_args(["--config", str(cfg)]))
        assert exc_info.value.code == 1
        assert "max_retries" in capsys.readouterr().err

    def test_validate_all_failure_exits(self, tmp_path, capsys):
        cfg = _config(tmp_path, "service:\n  agent_id: ''\n")
        with pytest.raises(SystemExit) as exc_info:
            bootstrap(parse_args(["--config", str(cfg)]))
        assert exc_info.value.code == 1
        assert "agent_id" in capsys.readouterr().err

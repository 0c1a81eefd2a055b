"""Tests for the mergebot entry point."""

from pathlib import Path
from unittest.mock import patch

from mergebot.adapters.github import GitHubAdapter
from mergebot.adapters.gitlab import GitLabAdapter
from mergebot.config import AppConfig, BotConfig, GitHubConfig, GitLabConfig
from mergebot.main import build_state, main, parse_args


def test_parse_args_defaults() -> None:
    args = parse_args([])
    assert args.config == Path("config.yaml")
    assert args.check is False


def test_check_only_validates_config(tmp_path: Path, capsys) -> None:
    config = tmp_path / "config.yaml"
    config.write_text("bot:\n  installation_login: my-org\n")
    with patch("mergebot.main.run_daemon") as run_daemon:
        assert main(["--config", str(config), "--check"]) == 0
    run_daemon.assert_not_called()
    assert "Config OK: my-org" in capsys.readouterr().out


def test_runs_daemon(tmp_path: Path) -> None:
    config = tmp_path / "config.yaml"
    config.write_text("bot: {}\n")
    with patch("mergebot.main.run_daemon") as run_daemon:
        assert main(["-c", str(config)]) == 0
    run_daemon.assert_called_once()


def test_fatal_error_exit_code(tmp_path: Path) -> None:
    config = tmp_path / "config.yaml"
    config.write_text("bot: {}\n")
    with patch("mergebot.main.run_daemon", side_effect=RuntimeError("boom")):
        assert main(["-c", str(config)]) == 1


def test_build_state(tmp_path: Path) -> None:
    config = AppConfig(
        bot=BotConfig(db_path=str(tmp_path / "db.sqlite3")),
        github=GitHubConfig(token="ghp_x"),
        gitlab=GitLabConfig(url="https://gitlab.example", access_token="glpat"),
    )
    state = build_state(config)
    assert isinstance(state.github, GitHubAdapter)
    assert isinstance(state.gitlab, GitLabAdapter)
    assert state.github.auth_token() == "ghp_x"


def test_build_state_without_gitlab(tmp_path: Path) -> None:
    config = AppConfig(
        bot=BotConfig(db_path=str(tmp_path / "db.sqlite3")),
        github=GitHubConfig(token="ghp_x"),
        gitlab=GitLabConfig(url=""),
    )
    assert build_state(config).gitlab is None

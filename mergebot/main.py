"""Mergebot entry point.

Runs the webhook daemon. Usage: mergebot [--config PATH] [--check].
"""

import argparse
import logging
import sys
from pathlib import Path

from mergebot.adapters.github import GitHubAdapter
from mergebot.adapters.gitlab import GitLabAdapter
from mergebot.config import AppConfig, load_config
from mergebot.logging import MergeBotLogging
from mergebot.services.store import FingerprintStore
from mergebot.state import AppState


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        prog="mergebot",
        description="Mergebot - merges pull requests and their companions on command",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=Path("config.yaml"),
        help="Path to YAML config file",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Only load and validate config, then exit",
    )
    return parser.parse_args(argv)


def build_state(config: AppConfig) -> AppState:
    """Create the store and API clients from config."""
    github = GitHubAdapter(
        api_url=config.github.api_url,
        token=config.github_token_resolved,
        app_id=config.github.app_id,
        private_key=config.github_private_key_resolved,
        installation_login=config.bot.installation_login,
    )
    gitlab = None
    if config.gitlab.url:
        gitlab = GitLabAdapter(config.gitlab.url, config.gitlab_token_resolved)
    store = FingerprintStore(Path(config.bot.db_path))
    return AppState(config=config, store=store, github=github, gitlab=gitlab)


def run_daemon(config: AppConfig) -> None:
    """Run the webhook server until interrupted."""
    from mergebot.webhook.server import run_webhook_server

    log = logging.getLogger("mergebot.daemon")
    state = build_state(config)
    secret = config.webhook_secret_resolved
    if not secret:
        log.warning("No webhook secret configured; every delivery will fail verification.")
    log.info(
        "Mergebot started | installation=%s | db=%s | repos=%s | org_checks=%s",
        config.bot.installation_login,
        config.bot.db_path,
        config.bot.repos_path,
        not config.bot.disable_org_checks,
    )
    run_webhook_server(state, secret)


def main(argv: list[str] | None = None) -> int:
    """Entry point for mergebot."""
    args = parse_args(argv)

    config_path = args.config
    if not config_path.is_file() and config_path == Path("config.yaml"):
        if Path("config.example.yaml").is_file():
            config_path = Path("config.example.yaml")
            logging.basicConfig(level=logging.INFO)
            logging.getLogger("mergebot").warning("config.yaml not found, using config.example.yaml")

    config = load_config(config_path)
    MergeBotLogging(config.logging).setup()

    if args.check:
        print("Config OK:", config.bot.installation_login or "(static token)", config.github.api_url)
        return 0

    try:
        run_daemon(config)
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        logging.getLogger("mergebot.daemon").exception("Fatal error: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

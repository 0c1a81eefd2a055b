"""Configuration loading from YAML and environment.

Secrets (webhook secret, GitHub App private key, tokens) are taken from
environment variables or from files (Docker secrets). Never put real
secrets in config files committed to the repo.
"""

from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _read_secret(env_key: str, file_env_key: str) -> str | None:
    """Read secret from env var or from file path in env (e.g. Docker
    secrets)."""
    value = _current_env.get(env_key)
    if value:
        return value.strip()
    file_path = _current_env.get(file_env_key)
    if file_path:
        return Path(file_path).read_text().strip()
    return None


def _is_placeholder(value: str | None) -> bool:
    return not value or value.startswith("${")


# Injected by load_config so validators can read env/file
_current_env: dict[str, str] = {}


class BotConfig(BaseSettings):
    """Merge pipeline behaviour and local state locations."""

    model_config = SettingsConfigDict(env_prefix="BOT_", extra="ignore")

    installation_login: str = Field(default="", description="Org or user the GitHub App is installed on")
    disable_org_checks: bool = Field(
        default=False,
        description="Skip org membership and 'Check reviews' requirements",
    )
    merge_command_delay: int = Field(
        default=4000,
        ge=0,
        description="Milliseconds to wait after a merge command before fetching the PR",
    )
    companion_status_settle_delay: int = Field(
        default=4000,
        ge=0,
        description="Milliseconds to wait after pushing a companion update before re-fetching it",
    )
    db_path: str = Field(default="db/mergebot.sqlite3", description="Fingerprint store location")
    repos_path: str = Field(default="repos", description="Root directory for per-repository working trees")
    commit_name: str = Field(default="mergebot", description="Git user.name for update commits")
    commit_email: str = Field(
        default="mergebot@users.noreply.github.com",
        description="Git user.email for update commits",
    )
    # Repo name -> dependency repo names whose lockfile entries are always refreshed on update
    dependency_update_configuration: Dict[str, List[str]] = Field(default_factory=dict)


class GitHubConfig(BaseSettings):
    """GitHub API and App authentication settings."""

    model_config = SettingsConfigDict(env_prefix="GITHUB_", extra="ignore")

    api_url: str = Field(default="https://api.github.com", description="API base URL")
    app_id: int | None = Field(default=None, description="GitHub App id")
    private_key: str | None = Field(default=None, description="PEM private key; prefer env or secret file")
    private_key_path: str | None = Field(default=None, description="Path to the PEM private key")
    token: str | None = Field(default=None, description="Static token used instead of App authentication")
    source_prefix: str = Field(
        default="https://github.com",
        description="Prefix of lockfile source URLs pointing at GitHub repositories",
    )
    source_suffix: str = Field(default="", description="Suffix of lockfile source URLs (e.g. .git)")


class GitLabConfig(BaseSettings):
    """GitLab settings used to check whether failed jobs were retried."""

    model_config = SettingsConfigDict(env_prefix="GITLAB_", extra="ignore")

    url: str = Field(default="", description="GitLab base URL, e.g. https://gitlab.example")
    access_token: str | None = Field(default=None, description="Access token; use env or secret file")


class WebhookConfig(BaseSettings):
    """Webhook server settings."""

    model_config = SettingsConfigDict(env_prefix="WEBHOOK_", extra="ignore")

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8080, ge=1, le=65535, description="Bind port")
    path: str = Field(default="/webhook", description="Webhook URL path")
    secret: str = Field(default="", description="Secret for x-hub-signature verification")


class LoggingConfig(BaseSettings):
    """Logging settings."""

    model_config = SettingsConfigDict(env_prefix="LOGGING_", extra="ignore")

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    # Logger name -> level, e.g. {"mergebot.services.cascade": "DEBUG", "urllib3": "WARNING"}
    loggers: Dict[str, str] = Field(default_factory=dict)


class AppConfig(BaseSettings):
    """Root application config from YAML + env."""

    model_config = SettingsConfigDict(extra="ignore")

    bot: BotConfig = Field(default_factory=BotConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    gitlab: GitLabConfig = Field(default_factory=GitLabConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def webhook_secret_resolved(self) -> str:
        """Resolve webhook secret from config, env or Docker secret file."""
        s = self.webhook.secret
        if not _is_placeholder(s):
            return s
        return _read_secret("WEBHOOK_SECRET", "WEBHOOK_SECRET_FILE") or ""

    @property
    def github_token_resolved(self) -> str | None:
        """Resolve a static GitHub token from config, env or secret file."""
        t = self.github.token
        if not _is_placeholder(t):
            return t
        return _read_secret("GITHUB_TOKEN", "GITHUB_TOKEN_FILE")

    @property
    def github_private_key_resolved(self) -> bytes | None:
        """Resolve the GitHub App private key (PEM bytes)."""
        key = self.github.private_key
        if not _is_placeholder(key):
            return key.encode()
        if self.github.private_key_path:
            return Path(self.github.private_key_path).read_bytes()
        secret = _read_secret("GITHUB_PRIVATE_KEY", "GITHUB_PRIVATE_KEY_FILE")
        return secret.encode() if secret else None

    @property
    def gitlab_token_resolved(self) -> str | None:
        """Resolve GitLab access token from config, env or secret file."""
        t = self.gitlab.access_token
        if not _is_placeholder(t):
            return t
        return _read_secret("GITLAB_ACCESS_TOKEN", "GITLAB_ACCESS_TOKEN_FILE")


def _substitute_env(value: Any) -> Any:
    """Replace ${VAR} and $VAR in strings with os.environ."""
    if isinstance(value, str):
        if value.startswith("${") and value.endswith("}"):
            key = value[2:-1].strip()
            return _current_env.get(key, value)
        if value.startswith("$") and not value.startswith("${"):
            key = value[1:].strip()
            return _current_env.get(key, value)
        return value
    if isinstance(value, dict):
        return {k: _substitute_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_substitute_env(v) for v in value]
    return value


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load config from YAML file and environment.

    Secrets: WEBHOOK_SECRET(_FILE), GITHUB_PRIVATE_KEY(_FILE),
    GITHUB_TOKEN(_FILE), GITLAB_ACCESS_TOKEN(_FILE).
    """
    global _current_env
    import os

    _current_env = dict(os.environ)

    path = config_path or Path("config.yaml")
    if not path.is_file():
        return AppConfig()

    raw = yaml.safe_load(path.read_text()) or {}
    raw = _substitute_env(raw)

    return AppConfig(
        bot=BotConfig(**(raw.get("bot") or {})),
        github=GitHubConfig(**(raw.get("github") or {})),
        gitlab=GitLabConfig(**(raw.get("gitlab") or {})),
        webhook=WebhookConfig(**(raw.get("webhook") or {})),
        logging=LoggingConfig(**(raw.get("logging") or {})),
    )

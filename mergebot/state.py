"""Process-wide state shared by webhook deliveries."""

import threading
from dataclasses import dataclass, field
from pathlib import Path

from mergebot.adapters.base import CIProbeAdapter, GitPlatformAdapter
from mergebot.config import AppConfig
from mergebot.services.store import FingerprintStore


@dataclass
class AppState:
    """Store, API clients and config, plus the delivery lock.

    ``cleanup_guard`` and ``cascade_guard`` hold PRs already visited by the
    recursive cleanup and cascade of the current delivery; they are reset
    at the start of every delivery.
    """

    config: AppConfig
    store: FingerprintStore
    github: GitPlatformAdapter
    gitlab: CIProbeAdapter | None = None
    lock: threading.Lock = field(default_factory=threading.Lock)
    cleanup_guard: set = field(default_factory=set)
    cascade_guard: set = field(default_factory=set)

    @property
    def repos_path(self) -> Path:
        return Path(self.config.bot.repos_path)

    def reset_guards(self) -> None:
        self.cleanup_guard.clear()
        self.cascade_guard.clear()

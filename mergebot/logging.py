"""Logging from config and env.

Levels (inclusive):
- ERROR: failed deliveries, database inconsistencies
- WARNING: best-effort operations that failed (comments, reactions)
- INFO: pipeline transitions, status reductions, cascade steps
- DEBUG: raw API responses and git command lines

The root level applies to every ``mergebot.*`` logger unless
``logging.loggers`` overrides it for a subtree, e.g. DEBUG for
``mergebot.services.cascade`` only. HTTP client libraries stay at INFO or
above unless overridden, since their DEBUG output echoes request headers.

Configure via config.yaml (logging.level, logging.format, logging.loggers)
or env (LOGGING_LEVEL, LOGGING_FORMAT).
"""

import logging
from typing import Dict

from mergebot.config import LoggingConfig

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Libraries whose DEBUG logs may contain Authorization headers
QUIET_LIBRARIES = ("urllib3", "requests")


def _resolve_level(level: str) -> int:
    """Map level name to logging constant; unknown names give INFO."""
    return LEVELS.get(level.upper().strip(), logging.INFO)


class MergeBotLogging:
    """Configures root and per-logger levels from LoggingConfig."""

    def __init__(self, config: LoggingConfig) -> None:
        self._level = _resolve_level(config.level)
        self._format = config.format or DEFAULT_FORMAT
        self._overrides: Dict[str, int] = {
            name: _resolve_level(level) for name, level in (config.loggers or {}).items()
        }

    def setup(self) -> None:
        """Apply format and levels; overrides are applied last and win."""
        logging.basicConfig(level=self._level, format=self._format, force=True)
        for name in QUIET_LIBRARIES:
            logging.getLogger(name).setLevel(max(self._level, logging.INFO))
        for name, level in self._overrides.items():
            logging.getLogger(name).setLevel(level)

    def get_logger(self, name: str) -> logging.Logger:
        return logging.getLogger(name)

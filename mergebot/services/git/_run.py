"""Internal helpers: run git and cargo commands, GitRunnerError."""

import logging
import subprocess
from pathlib import Path
from typing import Sequence

# Clones and lockfile updates of large repositories take a while
COMMAND_TIMEOUT = 1800


class GitRunnerError(Exception):
    """Raised when a git (or cargo) command fails."""

    pass


def _mask(text: str, secrets: Sequence[str]) -> str:
    for secret in secrets:
        if secret:
            text = text.replace(secret, "${SECRET}")
    return text


def _run_cmd(
    cmd: list[str],
    cwd: Path,
    log: logging.Logger | None = None,
    secrets: Sequence[str] = (),
    silence_errors: bool = False,
) -> str:
    """Run command; return stdout; raise GitRunnerError on non-zero exit.

    ``secrets`` are masked in log lines and error messages.
    """
    shown = _mask(" ".join(cmd), secrets)
    if log:
        log.debug("Running %s in %s", shown, cwd)
    try:
        result = subprocess.run(cmd, cwd=cwd, check=True, capture_output=True, text=True, timeout=COMMAND_TIMEOUT)
    except subprocess.CalledProcessError as e:
        err = _mask((e.stderr or e.stdout or "").strip(), secrets)
        if log and not silence_errors:
            log.warning("%s failed: %s", shown, err)
        raise GitRunnerError(f"{shown}: {err}") from e
    except subprocess.TimeoutExpired as e:
        raise GitRunnerError(f"{shown}: timed out after {COMMAND_TIMEOUT}s") from e
    except FileNotFoundError as e:
        raise GitRunnerError(f"{cmd[0]} not found") from e
    return result.stdout


def _run_git(
    args: list[str],
    cwd: Path,
    log: logging.Logger | None = None,
    secrets: Sequence[str] = (),
    silence_errors: bool = False,
) -> str:
    """Run git command; return stdout; raise GitRunnerError on non-zero exit."""
    return _run_cmd(["git"] + args, cwd=cwd, log=log, secrets=secrets, silence_errors=silence_errors)

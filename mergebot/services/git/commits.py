"""Base-branch merge commits and commits of lockfile changes."""

import logging
from pathlib import Path

from mergebot.services.git._run import GitRunnerError, _run_git


def merge_base_branch(
    base_branch: str,
    repo_dir: Path,
    bot_name: str,
    bot_email: str,
    log: logging.Logger | None = None,
) -> None:
    """Merge origin/<base_branch> into the checked out branch (--no-ff).

    On conflict the merge is aborted and GitRunnerError is raised.
    """
    try:
        _run_git(
            [
                "-c",
                f"user.name={bot_name}",
                "-c",
                f"user.email={bot_email}",
                "merge",
                f"origin/{base_branch}",
                "--no-ff",
                "--no-edit",
            ],
            cwd=repo_dir,
            log=log,
        )
    except GitRunnerError:
        if log:
            log.info("Aborting update due to merge failure of origin/%s", base_branch)
        _run_git(["merge", "--abort"], cwd=repo_dir, log=log)
        raise


def has_changes(repo_dir: Path, log: logging.Logger | None = None) -> bool:
    return bool(_run_git(["status", "--short"], cwd=repo_dir, log=log).strip())


def commit_if_changed(
    commit_message: str,
    bot_name: str,
    bot_email: str,
    repo_dir: Path,
    log: logging.Logger | None = None,
) -> bool:
    """Commit tracked changes with bot identity if the working tree changed.

    Returns:
        True if a commit was made, False if the tree was clean.
    """
    if not has_changes(repo_dir, log=log):
        if log:
            log.info("Nothing to commit, working tree clean")
        return False
    _run_git(
        [
            "-c",
            f"user.name={bot_name}",
            "-c",
            f"user.email={bot_email}",
            "commit",
            "-am",
            commit_message,
        ],
        cwd=repo_dir,
        log=log,
    )
    return True

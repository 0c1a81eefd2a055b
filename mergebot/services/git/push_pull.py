"""Push to the contributor remote and read back HEAD."""

import logging
from pathlib import Path
from typing import Sequence

from mergebot.services.git._run import _run_git


def push_branch(
    contributor: str,
    branch_name: str,
    repo_dir: Path,
    log: logging.Logger | None = None,
    secrets: Sequence[str] = (),
) -> bool:
    """Push the branch to the contributor remote.

    Returns:
        False if git reports the remote branch as already up to date.
    """
    output = _run_git(
        ["push", "--porcelain", "--force-with-lease", contributor, branch_name],
        cwd=repo_dir,
        log=log,
        secrets=secrets,
    )
    for line in output.splitlines():
        if line.strip().endswith("[up to date]"):
            if log:
                log.info("%s/%s is already up to date", contributor, branch_name)
            return False
    if log:
        log.info("Pushed %s to %s", branch_name, contributor)
    return True


def head_sha(repo_dir: Path, log: logging.Logger | None = None) -> str:
    return _run_git(["rev-parse", "HEAD"], cwd=repo_dir, log=log).strip()

"""Per-repository working trees: clone, contributor remote and tracking
branch setup, detached HEAD."""

import logging
from pathlib import Path

from mergebot.services.git._run import GitRunnerError, _run_git

CONTRIBUTOR_REMOTE_HOST = "github.com"


def remote_url(token: str, owner: str, repo: str) -> str:
    """HTTPS remote with the access token embedded."""
    return f"https://x-access-token:{token}@{CONTRIBUTOR_REMOTE_HOST}/{owner}/{repo}.git"


def ensure_cloned(
    repos_path: Path,
    owner: str,
    repo: str,
    token: str,
    log: logging.Logger | None = None,
) -> Path:
    """Clone ``owner/repo`` under ``repos_path/owner/repo`` unless already present."""
    repo_dir = Path(repos_path) / owner / repo
    if repo_dir.exists():
        if log:
            log.info("%s/%s is already cloned; skipping", owner, repo)
        return repo_dir
    repo_dir.parent.mkdir(parents=True, exist_ok=True)
    _run_git(
        ["clone", "-v", remote_url(token, owner, repo), str(repo_dir)],
        cwd=repo_dir.parent,
        log=log,
        secrets=[token],
    )
    return repo_dir


def detach_head(repo_dir: Path, log: logging.Logger | None = None) -> str:
    """Checkout the current commit detached so any branch can be deleted."""
    sha = _run_git(["rev-parse", "HEAD"], cwd=repo_dir, log=log).strip()
    _run_git(["checkout", sha], cwd=repo_dir, log=log, silence_errors=True)
    return sha


def setup_contributor_branch(
    repos_path: Path,
    token: str,
    owner: str,
    repo: str,
    base_branch: str,
    contributor: str,
    contributor_repo: str,
    contributor_branch: str,
    log: logging.Logger | None = None,
) -> Path:
    """Prepare a working tree on the PR head branch with the base branch fetched.

    The contributor remote and the local tracking branch are recreated on
    every call; leftovers of previous runs are discarded.

    Args:
        repos_path: Root directory for working trees.
        token: Access token embedded in the remote URLs.
        owner: Base repository owner.
        repo: Base repository name.
        base_branch: PR base branch (fetched from origin).
        contributor: Head repository owner; used as the remote name.
        contributor_repo: Head repository name.
        contributor_branch: PR head branch.
        log: Optional logger.

    Returns:
        Path of the working tree, checked out on the contributor branch.
    """
    secrets = [token]
    repo_dir = ensure_cloned(repos_path, owner, repo, token, log=log)

    _run_git(["add", "."], cwd=repo_dir, log=log)
    _run_git(["reset", "--hard"], cwd=repo_dir, log=log)

    try:
        _run_git(["remote", "get-url", contributor], cwd=repo_dir, log=log, secrets=secrets, silence_errors=True)
        has_remote = True
    except GitRunnerError:
        has_remote = False
    if has_remote:
        _run_git(["remote", "remove", contributor], cwd=repo_dir, log=log)
    _run_git(
        ["remote", "add", contributor, remote_url(token, contributor, contributor_repo)],
        cwd=repo_dir,
        log=log,
        secrets=secrets,
    )
    _run_git(["fetch", contributor, contributor_branch], cwd=repo_dir, log=log, secrets=secrets)

    detach_head(repo_dir, log=log)
    try:
        _run_git(["branch", "-D", contributor_branch], cwd=repo_dir, log=log, silence_errors=True)
    except GitRunnerError:
        pass
    _run_git(["checkout", "--track", f"{contributor}/{contributor_branch}"], cwd=repo_dir, log=log, secrets=secrets)

    _run_git(["remote", "set-url", "origin", remote_url(token, owner, repo)], cwd=repo_dir, log=log, secrets=secrets)
    _run_git(["fetch", "origin", base_branch], cwd=repo_dir, log=log, secrets=secrets)
    if log:
        log.info("Checked out %s/%s for %s/%s", contributor, contributor_branch, owner, repo)
    return repo_dir

"""Git operations: working tree setup, base merges, lockfile updates, push."""

from mergebot.services.git._run import GitRunnerError
from mergebot.services.git.branches import detach_head, ensure_cloned, remote_url, setup_contributor_branch
from mergebot.services.git.commits import commit_if_changed, has_changes, merge_base_branch
from mergebot.services.git.lockfile import (
    LOCKFILE_NAME,
    LockfileError,
    packages_from_source,
    parse_packages,
    references_source,
    source_url,
    update_packages,
)
from mergebot.services.git.push_pull import head_sha, push_branch

__all__ = [
    "LOCKFILE_NAME",
    "GitRunnerError",
    "LockfileError",
    "commit_if_changed",
    "detach_head",
    "ensure_cloned",
    "has_changes",
    "head_sha",
    "merge_base_branch",
    "packages_from_source",
    "parse_packages",
    "push_branch",
    "references_source",
    "remote_url",
    "setup_contributor_branch",
    "source_url",
    "update_packages",
]

"""Removal of pipeline entries and error reporting on PRs.

When a PR leaves the pipeline its entry is deleted and the entries that
depend on it are handled according to why it left:

- cancelled or failed: dependents are cancelled as well, recursively;
- head rewritten by the bot: dependents are repointed to the new SHA;
- merged: dependents are left to the cascade.
"""

import logging
from enum import Enum

from mergebot.adapters.base import GitPlatformError
from mergebot.errors import MergeBotError, MergeCancelOutcome, MessageError, describe_error
from mergebot.services.store import StoreError, make_key
from mergebot.state import AppState

LOG = logging.getLogger("mergebot.services.cleanup")


class CleanupReason(Enum):
    AFTER_MERGE = "after_merge"
    AFTER_SHA_UPDATE = "after_sha_update"
    CANCELLED = "cancelled"
    ERROR = "error"


def cleanup_merge_request(
    state: AppState,
    key_sha: str,
    owner: str,
    repo: str,
    number: int,
    reason: CleanupReason,
    updated_sha: str | None = None,
) -> None:
    """Delete every entry of ``owner/repo#number`` and apply side effects.

    Args:
        state: Application state.
        key_sha: SHA whose entry must be gone afterwards.
        owner: Base repository owner of the PR.
        repo: Base repository name of the PR.
        number: PR number.
        reason: Why the PR leaves the pipeline.
        updated_sha: New head SHA; required for AFTER_SHA_UPDATE.

    Raises:
        MessageError: The entry under ``key_sha`` is still present.
    """
    if reason == CleanupReason.AFTER_SHA_UPDATE and not updated_sha:
        raise ValueError("updated_sha is required for AFTER_SHA_UPDATE")

    related_dependents = {}
    for key, mr in state.store.iterate():
        if mr.identity == (owner, repo, number):
            LOG.info("Cleaning up %s due to key %s of %s/%s/pull/%s", mr.html_url, key_sha, owner, repo, number)
            state.store.delete(key)
            continue
        if mr.depends_on(owner, repo, number):
            related_dependents[key] = mr

    key = make_key(owner, repo, key_sha)
    if state.store.get(key) is not None:
        raise MessageError(f"Key {key} was not deleted from the database")

    guard_item = (owner, repo, number, key_sha)
    if guard_item in state.cleanup_guard:
        LOG.info(
            "Skipping side-effects of %s/%s/pull/%s (key %s) because they have already been processed",
            owner,
            repo,
            number,
            key_sha,
        )
        return
    is_outermost = not state.cleanup_guard
    state.cleanup_guard.add(guard_item)

    try:
        LOG.info(
            "Related dependents of %s/%s/pull/%s (key %s): %s",
            owner,
            repo,
            number,
            key_sha,
            [mr.html_url for mr in related_dependents.values()],
        )
        if reason in (CleanupReason.ERROR, CleanupReason.CANCELLED):
            for dependent in related_dependents.values():
                try:
                    cleanup_merge_request(
                        state, dependent.sha, dependent.owner, dependent.repo, dependent.number, reason
                    )
                except (MergeBotError, StoreError) as e:
                    LOG.error("Failed to clean up dependent %s: %s", dependent.html_url, e)
        elif reason == CleanupReason.AFTER_SHA_UPDATE:
            for dependent in related_dependents.values():
                for dependency in dependent.dependencies or []:
                    if dependency.identity == (owner, repo, number):
                        LOG.info(
                            "Dependency of %s on %s/%s/pull/%s was updated to SHA %s",
                            dependent.html_url,
                            owner,
                            repo,
                            number,
                            updated_sha,
                        )
                        dependency.sha = updated_sha
                state.store.put(dependent)
    finally:
        if is_outermost:
            state.cleanup_guard.clear()


def handle_error(state: AppState, outcome: MergeCancelOutcome, err: MergeBotError) -> None:
    """Report ``err`` on the PR it is scoped to; comment failures are logged."""
    if err.scope is None:
        LOG.error("Unscoped error: %s", err)
        return
    owner, repo, number = err.scope
    text = describe_error(err)
    if outcome == MergeCancelOutcome.WAS_CANCELLED:
        body = f"Merge cancelled due to error. Error: {text}"
    else:
        body = text
    LOG.info("Reporting error on %s/%s#%s: %s", owner, repo, number, err)
    try:
        state.github.create_comment(owner, repo, number, body)
    except GitPlatformError as e:
        LOG.error("Error posting comment on %s/%s#%s: %s", owner, repo, number, e)


def cancel_after_error(state: AppState, sha: str, owner: str, repo: str, number: int, err: MergeBotError) -> None:
    """Remove a PR after ``err`` and report it (cascade and status pathway failures)."""
    err.with_scope(owner, repo, number)
    try:
        cleanup_merge_request(state, sha, owner, repo, number, CleanupReason.ERROR)
    except (MergeBotError, StoreError) as e:
        LOG.error("Failed to clean up %s/%s#%s after error: %s", owner, repo, number, e)
    handle_error(state, MergeCancelOutcome.WAS_CANCELLED, err)

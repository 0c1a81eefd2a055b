"""Per-PR merge pipeline.

An entry in the fingerprint store means the PR is waiting: for its
statuses, for a dependency to merge, or for statuses on a head the bot
rewrote itself. Status deliveries re-enter the pipeline through
``process_commit_checks_and_statuses``; a successful merge hands over to
the cascade of dependents.
"""

import logging
import re
import time
from dataclasses import dataclass
from enum import Enum

from mergebot.adapters.base import GitPlatformError
from mergebot.errors import (
    PIPELINE_ERRORS,
    HeadChangedError,
    MergeBotError,
    MergeCancelOutcome,
    MessageError,
    classify_error,
    pull_request_scope,
)
from mergebot.models import PullRequest
from mergebot.services.cleanup import CleanupReason, cleanup_merge_request, handle_error
from mergebot.services.dependents import canonical_source_url
from mergebot.services.eligibility import check_merge_is_allowed
from mergebot.services.git import (
    LockfileError,
    commit_if_changed,
    detach_head,
    head_sha,
    merge_base_branch,
    push_branch,
    setup_contributor_branch,
    update_packages,
)
from mergebot.services.statuses import is_ready_to_merge
from mergebot.services.store import MergeRequest, StoreError, key_for, make_key
from mergebot.state import AppState

LOG = logging.getLogger("mergebot.services.pipeline")

DEFAULT_QUEUED_MESSAGE = "Waiting for commit status."
SOLVED_LATER_MESSAGE = (
    "This PR cannot be merged **at the moment** due to: {msg}\n\n"
    "mergebot expects that the problem will be solved automatically later and so the "
    "auto-merge process will be started. You can simply wait for now.\n\n"
)

# "Required status check ... is {pending,expected}." and
# "... required status checks have not succeeded: ... {pending,expected}."
MISSING_STATUS_RE = re.compile(r"required\s+status\s+.*(pending|expected)", re.IGNORECASE)


class MergeOutcome(Enum):
    MERGED = "merged"
    ALREADY_MERGED = "already_merged"
    # Refused because required statuses are pending; a later status delivery retries
    SOLVED_LATER = "solved_later"


@dataclass
class MergeResult:
    outcome: MergeOutcome
    message: str = ""


def register_merge_request(state: AppState, mr: MergeRequest) -> None:
    """Store ``mr``, replacing any other entry of the same PR."""
    key = key_for(mr)
    for other_key, _ in state.store.find_by_identity(mr.owner, mr.repo, mr.number):
        if other_key != key:
            LOG.info("Replacing entry %s of %s", other_key, mr.html_url)
            state.store.delete(other_key)
    LOG.info("Registering merge request (key %s): %s", key, mr.html_url)
    state.store.put(mr)


def queue_merge_request(state: AppState, mr: MergeRequest, queued_message: str | None) -> None:
    """Register ``mr`` and tell the PR it is waiting (unless no message)."""
    register_merge_request(state, mr)
    if not queued_message:
        return
    try:
        state.github.create_comment(mr.owner, mr.repo, mr.number, queued_message)
    except GitPlatformError as e:
        LOG.error("Error posting comment on %s: %s", mr.html_url, e)


def handle_merged_pull_request(state: AppState, pr: PullRequest, requested_by: str) -> bool:
    """If ``pr`` is already merged, clean it up and run its cascade.

    Returns:
        True if the PR was merged.
    """
    if not pr.merged:
        return False
    cleanup_merge_request(state, pr.head.sha, pr.owner, pr.repo, pr.number, CleanupReason.AFTER_MERGE)
    from mergebot.services.cascade import process_dependents_after_merge

    try:
        process_dependents_after_merge(state, pr, requested_by)
    except (MergeBotError, GitPlatformError, StoreError) as e:
        LOG.error("Failed to process dependents of %s after merge: %s", pr.html_url, e)
    return True


def merge_pull_request(state: AppState, pr: PullRequest, requested_by: str) -> MergeResult:
    """Squash-merge ``pr`` at its head SHA.

    Raises:
        MessageError: The API refused the merge for a reason that won't go
            away by itself.
        GitPlatformError: Any other API failure.
    """
    if handle_merged_pull_request(state, pr, requested_by):
        return MergeResult(MergeOutcome.ALREADY_MERGED)
    try:
        state.github.merge_pull_request(pr.owner, pr.repo, pr.number, pr.head.sha)
    except GitPlatformError as e:
        if e.status_code != 405:
            raise
        msg = e.body or str(e)
        if MISSING_STATUS_RE.search(msg):
            LOG.info("Ignoring merge failure of %s due to pending required status; message: %s", pr.html_url, msg)
            return MergeResult(MergeOutcome.SOLVED_LATER, msg)
        raise MessageError(msg) from e

    LOG.info("%s merged successfully.", pr.html_url)
    try:
        cleanup_merge_request(state, pr.head.sha, pr.owner, pr.repo, pr.number, CleanupReason.AFTER_MERGE)
    except (MergeBotError, StoreError) as e:
        LOG.error("Failed to cleanup %s in the database after merge: %s", pr.html_url, e)
    return MergeResult(MergeOutcome.MERGED)


def _after_merge(
    state: AppState,
    result: MergeResult,
    pr: PullRequest,
    mr: MergeRequest,
    queued_message: str | None,
) -> None:
    from mergebot.services.cascade import process_dependents_after_merge

    if result.outcome == MergeOutcome.MERGED:
        try:
            process_dependents_after_merge(state, pr, mr.requested_by)
        except PIPELINE_ERRORS as e:
            # The PR is merged already; its entry is gone and must not be cancelled
            LOG.error("Failed to process dependents of %s after merge: %s", pr.html_url, e)
            err = classify_error(e).with_scope(pr.owner, pr.repo, pr.number)
            handle_error(state, MergeCancelOutcome.WAS_NOT_CANCELLED, err)
    elif result.outcome == MergeOutcome.SOLVED_LATER:
        queue_merge_request(state, mr, queued_message)


def _dependency_source_urls(state: AppState, pr: PullRequest, mr: MergeRequest) -> list[str]:
    """Lockfile sources refreshed on update: dependencies plus configured repos."""
    urls = []
    for dependency in mr.dependencies or []:
        urls.append(canonical_source_url(state, dependency.owner, dependency.repo))
    for name in state.config.bot.dependency_update_configuration.get(pr.repo, []):
        urls.append(canonical_source_url(state, pr.owner, name))
    return list(dict.fromkeys(urls))


def update_pull_request_branch(state: AppState, pr: PullRequest, mr: MergeRequest) -> str:
    """Merge the base branch into the PR, refresh dependency lockfile
    entries and push.

    Returns:
        The head SHA after the push.
    """
    if pr.head.repo is None:
        raise MessageError(f"The head repository of {pr.html_url} was deleted")
    bot = state.config.bot
    token = state.github.auth_token()
    contributor = pr.head.repo.owner.login
    repo_dir = setup_contributor_branch(
        state.repos_path,
        token,
        pr.owner,
        pr.repo,
        pr.base.ref,
        contributor,
        pr.head.repo.name,
        pr.head.ref,
        log=LOG,
    )
    merge_base_branch(pr.base.ref, repo_dir, bot.commit_name, bot.commit_email, log=LOG)
    try:
        updated = update_packages(repo_dir, _dependency_source_urls(state, pr, mr), log=LOG)
    except LockfileError as e:
        raise MessageError(f"Failed to update the lockfile of {pr.html_url}: {e}") from e
    if updated:
        commit_if_changed(f"update {', '.join(updated)}", bot.commit_name, bot.commit_email, repo_dir, log=LOG)
    push_branch(contributor, pr.head.ref, repo_dir, log=LOG, secrets=[token])
    sha = head_sha(repo_dir, log=LOG)
    detach_head(repo_dir, log=LOG)
    LOG.info("Updated %s to %s", pr.html_url, sha)
    return sha


def update_then_merge(
    state: AppState,
    mr: MergeRequest,
    queued_message: str | None,
    should_register: bool,
    all_dependencies_ready: bool,
) -> str | None:
    """Bring ``mr`` up to date with its merged dependencies, then merge it.

    A PR that names dependencies and was not rewritten yet gets the base
    branch merged in and its lockfile refreshed; its entry then moves to
    the pushed SHA with ``was_updated`` set.

    Args:
        state: Application state.
        mr: Entry to process.
        queued_message: Comment posted if the PR ends up waiting.
        should_register: Store the entry when it has to wait.
        all_dependencies_ready: False if some dependency is still unmerged.

    Returns:
        The new head SHA if the branch was rewritten, else None.
    """
    pr = state.github.get_pull_request(mr.owner, mr.repo, mr.number)
    if handle_merged_pull_request(state, pr, mr.requested_by):
        return None
    # Queued and updated entries alike are pinned to the SHA they were accepted at
    if pr.head.sha != mr.sha:
        raise HeadChangedError(mr.sha, pr.head.sha)
    check_merge_is_allowed(state, pr, mr.requested_by)

    if not all_dependencies_ready:
        LOG.info("%s still has unmerged dependencies", pr.html_url)
        if should_register:
            queue_merge_request(state, mr, queued_message)
        return None

    if mr.was_updated or not mr.dependencies:
        if is_ready_to_merge(state, pr):
            _after_merge(state, merge_pull_request(state, pr, mr.requested_by), pr, mr, queued_message)
        elif should_register:
            queue_merge_request(state, mr, queued_message)
        return None

    updated_sha = update_pull_request_branch(state, pr, mr)

    delay = state.config.bot.companion_status_settle_delay
    if delay:
        LOG.info("Waiting %sms for statuses of %s to settle", delay, pr.html_url)
        time.sleep(delay / 1000)

    pr = state.github.get_pull_request(mr.owner, mr.repo, mr.number)
    if pr.head.sha != updated_sha:
        raise HeadChangedError(updated_sha, pr.head.sha)

    cleanup_merge_request(
        state,
        mr.sha,
        mr.owner,
        mr.repo,
        mr.number,
        CleanupReason.AFTER_SHA_UPDATE,
        updated_sha=updated_sha,
    )
    updated_mr = mr.model_copy(update={"sha": updated_sha, "was_updated": True, "dependencies": None})

    if is_ready_to_merge(state, pr):
        check_merge_is_allowed(state, pr, mr.requested_by)
        _after_merge(state, merge_pull_request(state, pr, mr.requested_by), pr, updated_mr, None)
    else:
        queue_merge_request(state, updated_mr, None)
    return updated_sha


def _process_entry(state: AppState, mr: MergeRequest) -> None:
    LOG.info("Processing statuses of %s (sha %s)", mr.html_url, mr.sha)
    with pull_request_scope(mr.owner, mr.repo, mr.number):
        pr = state.github.get_pull_request(mr.owner, mr.repo, mr.number)
        if handle_merged_pull_request(state, pr, mr.requested_by):
            return
        if mr.sha != pr.head.sha:
            raise HeadChangedError(mr.sha, pr.head.sha)
        if not is_ready_to_merge(state, pr):
            LOG.info("%s is not ready", pr.html_url)
            return
        check_merge_is_allowed(state, pr, mr.requested_by)

        for dependency in mr.dependencies or []:
            dependency_pr = state.github.get_pull_request(dependency.owner, dependency.repo, dependency.number)
            if dependency_pr.head.sha != dependency.sha:
                raise MessageError(
                    f"Dependency {dependency.html_url} 's HEAD SHA changed from {dependency.sha} "
                    f"to {dependency_pr.head.sha}. Aborting."
                )
            if not dependency_pr.merged:
                LOG.info(
                    "Giving up on merging %s because its dependency %s has not been merged yet",
                    pr.html_url,
                    dependency.html_url,
                )
                return
            LOG.info("Dependency %s of %s was merged, cleaning it", dependency.html_url, pr.html_url)
            cleanup_merge_request(
                state,
                dependency_pr.head.sha,
                dependency.owner,
                dependency.repo,
                dependency.number,
                CleanupReason.AFTER_MERGE,
            )

        update_then_merge(state, mr, None, should_register=False, all_dependencies_ready=True)


def _entries_behind_head(state: AppState, sha: str, owner: str, repo: str) -> list[MergeRequest]:
    """Entries of the PR now headed at ``sha`` that are pinned to an older SHA."""
    if not any((mr.owner, mr.repo) == (owner, repo) for _, mr in state.store.iterate()):
        return []
    pr = state.github.get_pull_request_by_head_sha(owner, repo, sha)
    if pr is None:
        return []
    entries = [mr for _, mr in state.store.find_by_identity(pr.owner, pr.repo, pr.number)]
    if entries:
        LOG.info("%s moved to %s after the merge was requested", pr.html_url, sha)
    return entries


def process_commit_checks_and_statuses(
    state: AppState,
    sha: str,
    owner: str | None = None,
    repo: str | None = None,
) -> None:
    """Resume the pipeline of the entry pinned to ``sha``, if any.

    ``owner``/``repo`` select the exact entry; without them, or when the
    delivery came from another repository (a fork), every entry for
    ``sha`` is processed. If none is pinned to ``sha`` but an open PR of
    ``owner``/``repo`` has moved to it, that PR's stale entry is processed
    and fails with HeadChangedError.
    """
    LOG.info("Checking for statuses of %s", sha)
    entries = []
    if owner and repo:
        mr = state.store.get(make_key(owner, repo, sha))
        if mr is not None:
            entries = [mr]
    if not entries:
        entries = [mr for _, mr in state.store.find_by_sha(sha)]
    if not entries and owner and repo:
        entries = _entries_behind_head(state, sha, owner, repo)
    if not entries:
        LOG.info("No merge request registered for %s", sha)
        return
    for mr in entries:
        _process_entry(state, mr)

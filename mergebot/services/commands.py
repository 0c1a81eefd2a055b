"""Bot commands posted as PR comments."""

import logging
from enum import Enum

from mergebot.adapters.base import GitPlatformError
from mergebot.errors import MessageError, pull_request_scope
from mergebot.models import PullRequest
from mergebot.services.cascade import process_dependents_after_merge
from mergebot.services.cleanup import CleanupReason, cleanup_merge_request
from mergebot.services.dependents import merge_request_for
from mergebot.services.eligibility import check_merge_is_allowed
from mergebot.services.git import merge_base_branch, push_branch, setup_contributor_branch
from mergebot.services.pipeline import (
    DEFAULT_QUEUED_MESSAGE,
    SOLVED_LATER_MESSAGE,
    MergeOutcome,
    merge_pull_request,
    queue_merge_request,
)
from mergebot.services.statuses import is_ready_to_merge
from mergebot.state import AppState

LOG = logging.getLogger("mergebot.services.commands")


class CommentCommand(Enum):
    MERGE_NORMAL = "bot merge"
    MERGE_FORCE = "bot merge force"
    MERGE_CANCEL = "bot merge cancel"
    REBASE = "bot rebase"

    @property
    def is_merge(self) -> bool:
        return self in (CommentCommand.MERGE_NORMAL, CommentCommand.MERGE_FORCE)


def parse_bot_comment_from_text(text: str | None) -> CommentCommand | None:
    """Match a comment body against the known commands (case-insensitive)."""
    if not text:
        return None
    normalized = text.strip().lower()
    for command in CommentCommand:
        if command.value == normalized:
            return command
    return None


def _merge(state: AppState, pr: PullRequest, requested_by: str, force: bool) -> None:
    check_merge_is_allowed(state, pr, requested_by)
    mr = merge_request_for(pr, requested_by, None)

    if not force and not is_ready_to_merge(state, pr):
        LOG.info("%s is not ready yet, queueing", pr.html_url)
        queue_merge_request(state, mr, DEFAULT_QUEUED_MESSAGE)
        return

    result = merge_pull_request(state, pr, requested_by)
    if result.outcome == MergeOutcome.SOLVED_LATER:
        if force:
            raise MessageError(result.message)
        queue_merge_request(state, mr, SOLVED_LATER_MESSAGE.format(msg=result.message))
    elif result.outcome == MergeOutcome.MERGED:
        process_dependents_after_merge(state, pr, requested_by)


def _comment(state: AppState, pr: PullRequest, body: str) -> None:
    try:
        state.github.create_comment(pr.owner, pr.repo, pr.number, body)
    except GitPlatformError as e:
        LOG.error("Error posting comment on %s: %s", pr.html_url, e)


def _cancel(state: AppState, pr: PullRequest) -> None:
    LOG.info("Cancelling merge of %s", pr.html_url)
    cleanup_merge_request(state, pr.head.sha, pr.owner, pr.repo, pr.number, CleanupReason.CANCELLED)
    _comment(state, pr, "Merge cancelled.")


def _rebase(state: AppState, pr: PullRequest) -> None:
    if pr.head.repo is None:
        raise MessageError(f"The head repository of {pr.html_url} was deleted")
    _comment(state, pr, "Rebasing")
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
    if not push_branch(contributor, pr.head.ref, repo_dir, log=LOG, secrets=[token]):
        _comment(state, pr, "Branch is already up-to-date")


def handle_command(state: AppState, pr: PullRequest, command: CommentCommand, requested_by: str) -> None:
    """Run ``command`` for ``pr`` on behalf of ``requested_by``.

    Errors are scoped to ``pr``; the caller reports them and decides about
    cancellation.
    """
    LOG.info("Handling %r from %s on %s", command.value, requested_by, pr.html_url)
    with pull_request_scope(pr.owner, pr.repo, pr.number):
        if command == CommentCommand.MERGE_NORMAL:
            _merge(state, pr, requested_by, force=False)
        elif command == CommentCommand.MERGE_FORCE:
            _merge(state, pr, requested_by, force=True)
        elif command == CommentCommand.MERGE_CANCEL:
            _cancel(state, pr)
        elif command == CommentCommand.REBASE:
            _rebase(state, pr)

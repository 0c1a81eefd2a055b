"""Handle webhook deliveries.

Every delivery runs to completion under the state lock. Errors never
escape: they are classified, the affected PR is cancelled when the error
stops its merge attempt, and a comment explains what happened.
"""

import logging
import time
from typing import Any, Dict

from pydantic import ValidationError

from mergebot.adapters.base import GitPlatformError
from mergebot.errors import (
    PIPELINE_ERRORS,
    AuthorizationError,
    MergeBotError,
    MergeCancelOutcome,
    classify_error,
    pull_request_scope,
)
from mergebot.models import CheckRunConclusion, StatusState
from mergebot.services.cleanup import CleanupReason, cleanup_merge_request, handle_error
from mergebot.services.commands import handle_command, parse_bot_comment_from_text
from mergebot.services.pipeline import process_commit_checks_and_statuses
from mergebot.services.store import StoreError
from mergebot.state import AppState
from mergebot.webhook.events import (
    CheckRunAction,
    CheckRunEvent,
    CommentAction,
    IssueCommentEvent,
    StatusEvent,
    WorkflowJobEvent,
    parse_payload,
)

LOG = logging.getLogger("mergebot.webhook.handlers")


def _is_pull_request(state: AppState, event: IssueCommentEvent) -> bool:
    """Tell PRs from plain issues; the ``pull_request`` hint may be missing."""
    if event.issue.pull_request is not None:
        return True
    try:
        state.github.get_pull_request(event.owner, event.repository.name, event.issue.number)
    except GitPlatformError as e:
        if e.status_code == 404:
            return False
        raise
    return True


def _acknowledge(state: AppState, event: IssueCommentEvent) -> None:
    try:
        state.github.acknowledge_comment(event.owner, event.repository.name, event.comment.id)
    except GitPlatformError as e:
        LOG.warning("Failed to acknowledge comment %s: %s", event.comment.id, e)


def _handle_issue_comment(state: AppState, event: IssueCommentEvent) -> None:
    if event.action != CommentAction.CREATED:
        return
    if event.sender.is_bot or event.comment.user.is_bot:
        LOG.debug("Ignoring comment %s from bot %s", event.comment.id, event.sender.login)
        return
    command = parse_bot_comment_from_text(event.comment.body)
    if command is None:
        return

    owner, repo, number = event.owner, event.repository.name, event.issue.number
    requested_by = event.comment.user.login
    with pull_request_scope(owner, repo, number):
        if not _is_pull_request(state, event):
            LOG.info("Ignoring command on issue %s/%s#%s: not a pull request", owner, repo, number)
            return
        LOG.info("Command %r from %s on %s/%s#%s", command.value, requested_by, owner, repo, number)

        if not state.config.bot.disable_org_checks and not state.github.is_org_member(owner, requested_by):
            raise AuthorizationError(
                f"@{requested_by} is not a member of {owner}; merge requests are not allowed."
            )

        _acknowledge(state, event)

        if command.is_merge and state.config.bot.merge_command_delay:
            # Freshly pushed commits may not be visible to the API yet
            time.sleep(state.config.bot.merge_command_delay / 1000)

        pr = state.github.get_pull_request(owner, repo, number)
        handle_command(state, pr, command, requested_by)


def _handle_status(state: AppState, event: StatusEvent) -> None:
    if event.state == StatusState.UNKNOWN:
        return
    LOG.info("Status %r is %s for %s", event.context, event.state.value, event.sha)
    process_commit_checks_and_statuses(state, event.sha, event.repository.owner.login, event.repository.name)


def _handle_check_run(state: AppState, event: CheckRunEvent) -> None:
    if event.action != CheckRunAction.COMPLETED:
        return
    conclusion = event.check_run.conclusion or CheckRunConclusion.UNKNOWN
    LOG.info("Check run completed (%s) for %s", conclusion.value, event.check_run.head_sha)
    process_commit_checks_and_statuses(
        state, event.check_run.head_sha, event.repository.owner.login, event.repository.name
    )


def _handle_workflow_job(state: AppState, event: WorkflowJobEvent) -> None:
    if event.workflow_job.conclusion is None:
        return
    LOG.info("Workflow job concluded (%s) for %s", event.workflow_job.conclusion, event.workflow_job.head_sha)
    process_commit_checks_and_statuses(
        state, event.workflow_job.head_sha, event.repository.owner.login, event.repository.name
    )


def _cancel_for_error(state: AppState, err: MergeBotError) -> MergeCancelOutcome:
    """Remove the scoped PR's entry (and its dependents) from the store."""
    if err.scope is None:
        return MergeCancelOutcome.WAS_NOT_CANCELLED
    owner, repo, number = err.scope
    try:
        entries = state.store.find_by_identity(owner, repo, number)
        if not entries:
            return MergeCancelOutcome.SHA_NOT_FOUND
        for _, mr in entries:
            cleanup_merge_request(state, mr.sha, owner, repo, number, CleanupReason.ERROR)
    except (MergeBotError, StoreError) as e:
        LOG.error("Failed to cancel %s/%s#%s after error: %s", owner, repo, number, e)
        return MergeCancelOutcome.WAS_NOT_CANCELLED
    return MergeCancelOutcome.WAS_CANCELLED


def _report_parsing_error(state: AppState, data: Dict[str, Any], error: ValidationError) -> None:
    """Comment on the PR if the invalid payload is a bot command; log otherwise."""
    comment = data.get("comment") or {}
    issue = data.get("issue") or {}
    repository = data.get("repository") or {}
    owner = (repository.get("owner") or {}).get("login")
    repo = repository.get("name")
    number = issue.get("number")
    is_command = parse_bot_comment_from_text(comment.get("body")) is not None
    if not (is_command and issue.get("pull_request") and owner and repo and isinstance(number, int)):
        LOG.warning("Ignoring unparseable payload: %s", error)
        return
    LOG.error("Failed to parse command payload on %s/%s#%s: %s", owner, repo, number, error)
    try:
        state.github.create_comment(owner, repo, number, f"Parsing error: {error}")
    except GitPlatformError as e:
        LOG.error("Error posting comment on %s/%s#%s: %s", owner, repo, number, e)


def handle_payload(state: AppState, data: Dict[str, Any]) -> None:
    """Handle one webhook delivery (already verified and decoded).

    Must be called with ``state.lock`` held.
    """
    state.reset_guards()
    try:
        event = parse_payload(data)
    except ValidationError as e:
        _report_parsing_error(state, data, e)
        return

    try:
        if isinstance(event, IssueCommentEvent):
            _handle_issue_comment(state, event)
        elif isinstance(event, StatusEvent):
            _handle_status(state, event)
        elif isinstance(event, CheckRunEvent):
            _handle_check_run(state, event)
        elif isinstance(event, WorkflowJobEvent):
            _handle_workflow_job(state, event)
        else:
            LOG.debug("Ignoring delivery with keys %s", sorted(data))
    except PIPELINE_ERRORS as e:
        err = classify_error(e)
        LOG.error("Delivery failed: %s", err, exc_info=not isinstance(e, MergeBotError))
        outcome = MergeCancelOutcome.WAS_NOT_CANCELLED
        if err.stops_merge_attempt:
            outcome = _cancel_for_error(state, err)
        handle_error(state, outcome, err)

"""Error taxonomy of the merge pipeline.

Every error may carry the pull request it applies to (``scope``), which is
filled in by the first caller that knows it. ``stops_merge_attempt`` tells
the delivery handler whether the PR's pipeline must be cancelled.
"""

from contextlib import contextmanager
from enum import Enum
from typing import Iterator

from mergebot.adapters.base import GitPlatformError
from mergebot.services.git import GitRunnerError
from mergebot.services.store import StoreError

PullRequestScope = tuple[str, str, int]

# Errors raised by the API clients, the git driver and the store
COLLABORATOR_ERRORS = (GitPlatformError, GitRunnerError, StoreError)


class MergeCancelOutcome(Enum):
    """What happened to the stored entry when an error was handled."""

    SHA_NOT_FOUND = "sha_not_found"
    WAS_CANCELLED = "was_cancelled"
    WAS_NOT_CANCELLED = "was_not_cancelled"


class MergeBotError(Exception):
    """Base error of the merge pipeline."""

    stops_merge_attempt = True

    def __init__(self, message: str, scope: PullRequestScope | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.scope = scope

    def with_scope(self, owner: str, repo: str, number: int) -> "MergeBotError":
        """Attach PR details unless an inner call already did."""
        if self.scope is None:
            self.scope = (owner, repo, number)
        return self


class AuthorizationError(MergeBotError):
    """Command author is not allowed to request merges for the PR."""

    stops_merge_attempt = False


class NotMergeableError(MergeBotError):
    pass


class HeadChangedError(MergeBotError):
    def __init__(self, expected: str, actual: str, scope: PullRequestScope | None = None) -> None:
        super().__init__(
            f"HEAD commit changed from {expected} to {actual} while the merge was pending",
            scope,
        )
        self.expected = expected
        self.actual = actual


class ChecksFailedError(MergeBotError):
    def __init__(self, commit_sha: str, scope: PullRequestScope | None = None) -> None:
        super().__init__(f"Checks failed for {commit_sha}", scope)
        self.commit_sha = commit_sha


class StatusesFailedError(MergeBotError):
    def __init__(self, commit_sha: str, scope: PullRequestScope | None = None) -> None:
        super().__init__(f"Statuses failed for {commit_sha}", scope)
        self.commit_sha = commit_sha


class CompanionIneligibleError(MergeBotError):
    """A companion of the PR can't be updated or merged by the bot."""


class MessageError(MergeBotError):
    """Generic failure described by its message."""


class TransportError(MergeBotError):
    """Hosting or CI API request failed."""


class SerializationError(MergeBotError):
    """Stored entry could not be read or written."""


class GitError(MergeBotError):
    """Git or lockfile command failed in a working tree."""


def classify_error(exc: Exception) -> MergeBotError:
    """Map collaborator errors (API client, git driver, store) to the taxonomy."""
    if isinstance(exc, MergeBotError):
        return exc
    if isinstance(exc, GitPlatformError):
        return TransportError(str(exc))
    if isinstance(exc, GitRunnerError):
        return GitError(str(exc))
    if isinstance(exc, StoreError):
        return SerializationError(str(exc))
    return MessageError(str(exc))


PIPELINE_ERRORS = (MergeBotError,) + COLLABORATOR_ERRORS


@contextmanager
def pull_request_scope(owner: str, repo: str, number: int) -> Iterator[None]:
    """Attach PR details to errors raised in the block.

    Collaborator errors are converted to the taxonomy on the way out.
    """
    try:
        yield
    except MergeBotError as e:
        e.with_scope(owner, repo, number)
        raise
    except COLLABORATOR_ERRORS as e:
        raise classify_error(e).with_scope(owner, repo, number) from e


def describe_error(err: MergeBotError) -> str:
    """User-facing text for an error, posted as a PR comment."""
    if isinstance(err, AuthorizationError):
        return err.message
    if isinstance(err, HeadChangedError):
        return (
            f"The PR's HEAD changed from {err.expected} to {err.actual} after the merge was requested. "
            "Please review the new commits and request the merge again."
        )
    if isinstance(err, ChecksFailedError):
        return f"Checks failed for {err.commit_sha}."
    if isinstance(err, StatusesFailedError):
        return f"Statuses failed for {err.commit_sha}."
    if isinstance(err, TransportError):
        return f"Request to the API failed: {err.message}"
    if isinstance(err, GitError):
        return f"Git operation failed: {err.message}"
    if isinstance(err, SerializationError):
        return f"Failed to read or write the merge state: {err.message}"
    return err.message

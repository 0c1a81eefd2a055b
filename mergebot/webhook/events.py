"""Webhook payload schemas.

Processed deliveries:
- issue_comment (action=created): bot commands on PRs
- status: commit status changed
- check_run (action=completed)
- workflow_job with a conclusion

The payload kind is recognized from its fields (the event header is not
needed). Anything else parses to ``UnknownEvent`` and is ignored.
"""

from enum import Enum
from typing import Annotated, Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict

from mergebot.models import (
    CheckRunConclusion,
    CheckRunStatus,
    RepositoryRef,
    StatusState,
    User,
    or_unknown,
)


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class CommentAction(str, Enum):
    CREATED = "created"
    EDITED = "edited"
    DELETED = "deleted"
    UNKNOWN = "unknown"


class CheckRunAction(str, Enum):
    CREATED = "created"
    COMPLETED = "completed"
    REREQUESTED = "rerequested"
    REQUESTED_ACTION = "requested_action"
    UNKNOWN = "unknown"


class Comment(_Payload):
    id: int
    body: str = ""
    user: User


class Issue(_Payload):
    number: int
    # Set when the issue is a PR (not sent by every webhook version)
    pull_request: Optional[Dict[str, Any]] = None


class IssueCommentEvent(_Payload):
    """New comment on an issue or PR (issue_comment webhook)."""

    action: Annotated[CommentAction, or_unknown(CommentAction)]
    comment: Comment
    issue: Issue
    repository: RepositoryRef
    sender: User

    @property
    def owner(self) -> str:
        return self.repository.owner.login


class StatusEvent(_Payload):
    """Commit status changed (status webhook)."""

    sha: str
    state: Annotated[StatusState, or_unknown(StatusState)]
    context: str = ""
    repository: RepositoryRef


class CheckRunPayload(_Payload):
    head_sha: str
    status: Annotated[CheckRunStatus, or_unknown(CheckRunStatus)] = CheckRunStatus.UNKNOWN
    conclusion: Optional[Annotated[CheckRunConclusion, or_unknown(CheckRunConclusion)]] = None


class CheckRunEvent(_Payload):
    """Check run changed (check_run webhook)."""

    action: Annotated[CheckRunAction, or_unknown(CheckRunAction)]
    check_run: CheckRunPayload
    repository: RepositoryRef


class WorkflowJobPayload(_Payload):
    head_sha: str
    conclusion: Optional[str] = None


class WorkflowJobEvent(_Payload):
    """Actions job changed (workflow_job webhook)."""

    workflow_job: WorkflowJobPayload
    repository: RepositoryRef


class UnknownEvent(_Payload):
    """Any delivery the bot does not act upon."""


Event = Union[IssueCommentEvent, StatusEvent, CheckRunEvent, WorkflowJobEvent, UnknownEvent]


def parse_payload(data: Dict[str, Any]) -> Event:
    """Parse a delivery body into one of the known events.

    Raises:
        pydantic.ValidationError: The payload looks like a known event but
            its fields don't match.
    """
    if "comment" in data and "issue" in data:
        return IssueCommentEvent.model_validate(data)
    if "check_run" in data:
        return CheckRunEvent.model_validate(data)
    if "workflow_job" in data:
        return WorkflowJobEvent.model_validate(data)
    if "sha" in data and "state" in data:
        return StatusEvent.model_validate(data)
    return UnknownEvent()

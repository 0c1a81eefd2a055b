"""Data models for pull requests, users, commit statuses, check runs and
GitLab jobs as returned by the hosting and CI APIs.

Only the fields the merge pipeline reads are declared; everything else in
the API responses is ignored. String-valued discriminators fall back to
``UNKNOWN`` so new values sent by the APIs never break parsing.
"""

from enum import Enum
from typing import Annotated, Any, Optional, Type

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field


def or_unknown(enum_cls: Type[Enum]) -> BeforeValidator:
    """Coerce values that are not members of ``enum_cls`` to its UNKNOWN."""

    def coerce(value: Any) -> Any:
        if isinstance(value, enum_cls):
            return value
        try:
            return enum_cls(value)
        except ValueError:
            return enum_cls["UNKNOWN"]

    return BeforeValidator(coerce)


class _ApiModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class UserType(str, Enum):
    USER = "User"
    BOT = "Bot"
    UNKNOWN = "unknown"


class User(_ApiModel):
    login: str
    type: Optional[Annotated[UserType, or_unknown(UserType)]] = None

    @property
    def is_bot(self) -> bool:
        return self.type == UserType.BOT


class RepositoryRef(_ApiModel):
    """Repository as embedded in PR head/base."""

    name: str
    owner: User


class Head(_ApiModel):
    sha: str
    ref: str
    # Missing when the fork was deleted
    repo: RepositoryRef | None = None


class Base(_ApiModel):
    ref: str
    repo: RepositoryRef


class PullRequest(_ApiModel):
    """Pull request (GET /repos/{owner}/{repo}/pulls/{number})."""

    number: int
    html_url: str
    body: str | None = None
    merged: bool = False
    mergeable: bool | None = None
    maintainer_can_modify: bool = False
    # User might be missing when it has been deleted
    user: User | None = None
    head: Head
    base: Base

    @property
    def owner(self) -> str:
        """Login of the base repository owner (the PR's org)."""
        return self.base.repo.owner.login

    @property
    def repo(self) -> str:
        """Name of the base repository."""
        return self.base.repo.name

    @property
    def identity(self) -> tuple[str, str, int]:
        return (self.owner, self.repo, self.number)


class StatusState(str, Enum):
    SUCCESS = "success"
    PENDING = "pending"
    FAILURE = "failure"
    ERROR = "error"
    UNKNOWN = "unknown"


class CommitStatus(_ApiModel):
    """Single commit status (GET /repos/{owner}/{repo}/commits/{sha}/statuses)."""

    id: int
    context: str
    state: Annotated[StatusState, or_unknown(StatusState)]
    description: str | None = None
    target_url: str | None = None


class CheckRunStatus(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    UNKNOWN = "unknown"


class CheckRunConclusion(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    NEUTRAL = "neutral"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"
    TIMED_OUT = "timed_out"
    ACTION_REQUIRED = "action_required"
    UNKNOWN = "unknown"


class CheckRun(_ApiModel):
    """Single check run (GET /repos/{owner}/{repo}/commits/{sha}/check-runs)."""

    id: int
    name: str
    status: Annotated[CheckRunStatus, or_unknown(CheckRunStatus)]
    conclusion: Optional[Annotated[CheckRunConclusion, or_unknown(CheckRunConclusion)]] = None
    head_sha: str = ""


class Contents(_ApiModel):
    """File contents (GET /repos/{owner}/{repo}/contents/{path}); base64 encoded."""

    content: str = ""
    encoding: str = "base64"


class GitlabPipelineStatus(str, Enum):
    CREATED = "created"
    WAITING_FOR_RESOURCE = "waiting_for_resource"
    PREPARING = "preparing"
    PENDING = "pending"
    RUNNING = "running"
    SCHEDULED = "scheduled"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELED = "canceled"
    SKIPPED = "skipped"
    MANUAL = "manual"
    UNKNOWN = "unknown"


# Pipeline states in which a failed job may still have been retried
PENDING_PIPELINE_STATUSES = frozenset(
    {
        GitlabPipelineStatus.CREATED,
        GitlabPipelineStatus.WAITING_FOR_RESOURCE,
        GitlabPipelineStatus.PREPARING,
        GitlabPipelineStatus.PENDING,
        GitlabPipelineStatus.RUNNING,
        GitlabPipelineStatus.SCHEDULED,
    }
)


class GitlabJobPipeline(_ApiModel):
    id: int
    project_id: int
    status: Annotated[GitlabPipelineStatus, or_unknown(GitlabPipelineStatus)]


class GitlabJob(_ApiModel):
    """GitLab job (GET /api/v4/projects/{project}/jobs/{id})."""

    name: str
    pipeline: GitlabJobPipeline


class GitlabPipelineJob(_ApiModel):
    """Entry of GET /api/v4/projects/{id}/pipelines/{id}/jobs."""

    name: str
    status: str = Field(default="")

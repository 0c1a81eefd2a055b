"""Abstract base for the hosting service and CI probe adapters."""

from abc import ABC, abstractmethod
from typing import List, Optional

from mergebot.models import CheckRun, CommitStatus, GitlabJob, GitlabPipelineJob, PullRequest


class GitPlatformError(Exception):
    """Raised when a hosting or CI API call fails."""

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class GitPlatformAdapter(ABC):
    """Operations the merge pipeline needs from the code hosting service."""

    @abstractmethod
    def get_pull_request(self, owner: str, repo: str, number: int) -> PullRequest:
        """Fetch PR by number."""
        ...

    @abstractmethod
    def get_pull_request_by_head_sha(self, owner: str, repo: str, sha: str) -> Optional[PullRequest]:
        """Open PR of ``owner/repo`` whose head is ``sha``, or None."""
        ...

    @abstractmethod
    def merge_pull_request(self, owner: str, repo: str, number: int, sha: str) -> None:
        """Squash-merge the PR pinned to ``sha``.

        Raises GitPlatformError with the response status code on refusal.
        """
        ...

    @abstractmethod
    def get_file_contents(self, owner: str, repo: str, path: str, ref: str) -> str:
        """Return decoded text of ``path`` at ``ref``."""
        ...

    @abstractmethod
    def list_statuses(self, owner: str, repo: str, sha: str) -> List[CommitStatus]:
        ...

    @abstractmethod
    def list_check_runs(self, owner: str, repo: str, sha: str) -> List[CheckRun]:
        ...

    @abstractmethod
    def create_comment(self, owner: str, repo: str, number: int, body: str) -> None:
        """Post a comment on an issue or PR."""
        ...

    @abstractmethod
    def is_org_member(self, org: str, login: str) -> bool:
        ...

    def acknowledge_comment(self, owner: str, repo: str, comment_id: int) -> None:
        """Mark a command comment as seen. Override if supported."""
        return None

    def auth_token(self) -> str:
        """Token embedded in git remote URLs. Override if supported."""
        raise NotImplementedError("auth_token")


class CIProbeAdapter(ABC):
    """Secondary CI queried to tell whether a failed job was retried."""

    @abstractmethod
    def get_job(self, project: str, job_id: int) -> GitlabJob:
        """Fetch job by id; ``project`` is the project path (owner/name)."""
        ...

    @abstractmethod
    def list_pipeline_jobs(self, project_id: int, pipeline_id: int) -> List[GitlabPipelineJob]:
        """Jobs of the pipeline that are pending, running, created or succeeded."""
        ...

"""Merge request record as stored in the fingerprint store."""

from typing import List, Optional

from pydantic import BaseModel, Field


class MergeRequestDependency(BaseModel):
    """Upstream PR a stored merge request waits on."""

    sha: str = Field(..., description="Head SHA of the dependency when the edge was recorded")
    owner: str
    repo: str
    number: int
    html_url: str
    is_directly_referenced: bool = Field(
        ...,
        description="True if the dependent's body names this PR; False if inferred from its lockfile",
    )

    model_config = {"extra": "forbid"}

    @property
    def identity(self) -> tuple[str, str, int]:
        return (self.owner, self.repo, self.number)


class MergeRequest(BaseModel):
    """Pipeline entry of one PR, keyed by its pinned head SHA."""

    sha: str = Field(..., description="Head SHA the pipeline is pinned to")
    owner: str = Field(..., description="Base repository owner")
    repo: str = Field(..., description="Base repository name")
    number: int
    html_url: str
    requested_by: str = Field(..., description="Login of the user who issued the merge command")
    was_updated: bool = Field(default=False, description="True once the bot rewrote the PR branch")
    dependencies: Optional[List[MergeRequestDependency]] = None

    model_config = {"extra": "forbid"}

    @property
    def identity(self) -> tuple[str, str, int]:
        return (self.owner, self.repo, self.number)

    def depends_on(self, owner: str, repo: str, number: int) -> bool:
        """True if any dependency edge points at the given PR."""
        return any(d.identity == (owner, repo, number) for d in self.dependencies or [])

"""Shared fixtures: in-memory hosting and CI APIs, app state on a tmp store."""

from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from mergebot.adapters.base import CIProbeAdapter, GitPlatformAdapter, GitPlatformError
from mergebot.config import AppConfig, BotConfig, GitHubConfig, GitLabConfig
from mergebot.models import (
    CheckRun,
    CommitStatus,
    GitlabJob,
    GitlabPipelineJob,
    PullRequest,
)
from mergebot.services.store import FingerprintStore
from mergebot.state import AppState

Identity = Tuple[str, str, int]


def make_pr(
    owner: str = "org",
    repo: str = "repo",
    number: int = 1,
    sha: str = "SHA1",
    body: str | None = None,
    merged: bool = False,
    mergeable: bool | None = True,
    author: str = "alice",
    author_type: str = "User",
    head_owner: str | None = None,
    maintainer_can_modify: bool = True,
    head_ref: str = "feature",
    base_ref: str = "master",
) -> PullRequest:
    """Build a PR as returned by GET /repos/{owner}/{repo}/pulls/{number}."""
    return PullRequest.model_validate(
        {
            "number": number,
            "html_url": f"https://github.com/{owner}/{repo}/pull/{number}",
            "body": body,
            "merged": merged,
            "mergeable": mergeable,
            "maintainer_can_modify": maintainer_can_modify,
            "user": {"login": author, "type": author_type},
            "head": {
                "sha": sha,
                "ref": head_ref,
                "repo": {"name": repo, "owner": {"login": head_owner or author}},
            },
            "base": {"ref": base_ref, "repo": {"name": repo, "owner": {"login": owner}}},
        }
    )


def status(context: str, state: str, id: int = 1, target_url: str | None = None) -> CommitStatus:
    return CommitStatus(id=id, context=context, state=state, target_url=target_url)


def check_run(name: str, conclusion: str | None = "success", id: int = 1) -> CheckRun:
    return CheckRun(
        id=id,
        name=name,
        status="completed" if conclusion else "in_progress",
        conclusion=conclusion,
    )


class FakeGitHub(GitPlatformAdapter):
    """In-memory hosting API recording the calls the pipeline makes."""

    def __init__(self) -> None:
        self.prs: Dict[Identity, PullRequest] = {}
        self.statuses: Dict[str, List[CommitStatus]] = {}
        self.check_runs: Dict[str, List[CheckRun]] = {}
        self.files: Dict[Tuple[str, str, str, str], str] = {}
        self.members: set = set()
        self.comments: List[Tuple[str, str, int, str]] = []
        self.merges: List[Tuple[str, str, int, str]] = []
        self.acknowledged: List[int] = []
        self.merge_error: GitPlatformError | None = None

    def add_pr(self, pr: PullRequest) -> PullRequest:
        self.prs[pr.identity] = pr
        return pr

    def set_head(self, owner: str, repo: str, number: int, sha: str) -> None:
        pr = self.prs[(owner, repo, number)]
        head = pr.head.model_copy(update={"sha": sha})
        self.prs[pr.identity] = pr.model_copy(update={"head": head})

    def comments_on(self, owner: str, repo: str, number: int) -> List[str]:
        return [c[3] for c in self.comments if c[:3] == (owner, repo, number)]

    def get_pull_request(self, owner: str, repo: str, number: int) -> PullRequest:
        pr = self.prs.get((owner, repo, number))
        if pr is None:
            raise GitPlatformError("404: Not Found", status_code=404, body="Not Found")
        return pr

    def get_pull_request_by_head_sha(self, owner: str, repo: str, sha: str) -> Optional[PullRequest]:
        for pr in self.prs.values():
            if (pr.owner, pr.repo, pr.head.sha) == (owner, repo, sha) and not pr.merged:
                return pr
        return None

    def merge_pull_request(self, owner: str, repo: str, number: int, sha: str) -> None:
        if self.merge_error is not None:
            raise self.merge_error
        pr = self.get_pull_request(owner, repo, number)
        if pr.head.sha != sha:
            raise GitPlatformError("409: Head branch was modified", status_code=409)
        self.merges.append((owner, repo, number, sha))
        self.prs[pr.identity] = pr.model_copy(update={"merged": True})

    def get_file_contents(self, owner: str, repo: str, path: str, ref: str) -> str:
        try:
            return self.files[(owner, repo, path, ref)]
        except KeyError:
            raise GitPlatformError("404: Not Found", status_code=404) from None

    def list_statuses(self, owner: str, repo: str, sha: str) -> List[CommitStatus]:
        return list(self.statuses.get(sha, []))

    def list_check_runs(self, owner: str, repo: str, sha: str) -> List[CheckRun]:
        return list(self.check_runs.get(sha, []))

    def create_comment(self, owner: str, repo: str, number: int, body: str) -> None:
        self.comments.append((owner, repo, number, body))

    def is_org_member(self, org: str, login: str) -> bool:
        return (org, login) in self.members

    def acknowledge_comment(self, owner: str, repo: str, comment_id: int) -> None:
        self.acknowledged.append(comment_id)

    def auth_token(self) -> str:
        return "ghs_token"


class FakeGitLab(CIProbeAdapter):
    def __init__(self) -> None:
        self.jobs: Dict[Tuple[str, int], GitlabJob] = {}
        self.pipeline_jobs: Dict[Tuple[int, int], List[GitlabPipelineJob]] = {}

    def get_job(self, project: str, job_id: int) -> GitlabJob:
        return self.jobs[(project, job_id)]

    def list_pipeline_jobs(self, project_id: int, pipeline_id: int) -> List[GitlabPipelineJob]:
        return list(self.pipeline_jobs.get((project_id, pipeline_id), []))


@pytest.fixture
def github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def gitlab() -> FakeGitLab:
    return FakeGitLab()


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        bot=BotConfig(
            installation_login="org",
            merge_command_delay=0,
            companion_status_settle_delay=0,
            db_path=str(tmp_path / "db" / "mergebot.sqlite3"),
            repos_path=str(tmp_path / "repos"),
        ),
        github=GitHubConfig(token="ghs_token", source_prefix="https://github.com", source_suffix=""),
        gitlab=GitLabConfig(url="https://gitlab.example"),
    )


@pytest.fixture
def state(config: AppConfig, github: FakeGitHub, gitlab: FakeGitLab) -> AppState:
    return AppState(
        config=config,
        store=FingerprintStore(Path(config.bot.db_path)),
        github=github,
        gitlab=gitlab,
    )

"""Reduction of commit statuses and check runs to a single outcome.

Only the latest instance of each status context and each check run name
counts, as on GitHub. Failing statuses reported by the configured GitLab
instance are rescued when GitLab already retried the job: a same-named job
queued, running or succeeded in the still-active pipeline means the failure
is superseded.
"""

import json
import logging
import re
from enum import Enum
from typing import Dict, List

from mergebot.errors import ChecksFailedError, StatusesFailedError
from mergebot.models import (
    PENDING_PIPELINE_STATUSES,
    CheckRun,
    CheckRunConclusion,
    CheckRunStatus,
    CommitStatus,
    PullRequest,
    StatusState,
)
from mergebot.state import AppState

LOG = logging.getLogger("mergebot.services.statuses")

# e.g. https://gitlab.example/group/project/builds/123
GITLAB_JOB_URL_RE = re.compile(r"^(\w+://[^/]+)/(.*)/builds/([0-9]+)$", re.IGNORECASE)


class Status(Enum):
    SUCCESS = "success"
    PENDING = "pending"
    FAILURE = "failure"


def _allows_failure(status: CommitStatus) -> bool:
    """True if the description is a JSON object with build_allow_failure set."""
    if not status.description:
        return False
    try:
        data = json.loads(status.description)
    except ValueError:
        return False
    return isinstance(data, dict) and data.get("build_allow_failure") is True


def latest_statuses(statuses: List[CommitStatus]) -> Dict[str, CommitStatus]:
    """Latest status per context, allow-failure statuses dropped."""
    latest: Dict[str, CommitStatus] = {}
    for status in statuses:
        if _allows_failure(status):
            continue
        prev = latest.get(status.context)
        if prev is None or prev.id < status.id:
            latest[status.context] = status
    return latest


def latest_check_runs(check_runs: List[CheckRun]) -> Dict[str, CheckRun]:
    latest: Dict[str, CheckRun] = {}
    for run in check_runs:
        prev = latest.get(run.name)
        if prev is None or prev.id < run.id:
            latest[run.name] = run
    return latest


def _job_was_retried(state: AppState, project: str, job_id: int) -> bool:
    job = state.gitlab.get_job(project, job_id)
    if job.pipeline.status not in PENDING_PIPELINE_STATUSES:
        return False
    jobs = state.gitlab.list_pipeline_jobs(job.pipeline.project_id, job.pipeline.id)
    return any(j.name == job.name for j in jobs)


def rescue_failing_statuses(state: AppState, failing: List[CommitStatus], html_url: str = "") -> bool:
    """True if every failing status is a GitLab job that was retried.

    Any failing status outside the configured GitLab instance defeats the
    rescue.
    """
    gitlab_url = state.config.gitlab.url.rstrip("/")
    if not failing or state.gitlab is None or not gitlab_url:
        return False
    candidates = []
    for status in failing:
        match = GITLAB_JOB_URL_RE.match(status.target_url or "")
        if match is None or match.group(1).lower() != gitlab_url.lower():
            LOG.info("%s: failing status %s is not from GitLab; no rescue", html_url, status.context)
            return False
        candidates.append((status, match.group(2), int(match.group(3))))

    recovered = []
    for status, project, job_id in candidates:
        if not _job_was_retried(state, project, job_id):
            LOG.info("%s: GitLab job %s of %s was not retried", html_url, job_id, project)
            return False
        recovered.append(status.context)
    LOG.info(
        "%s was initially considered to be failing, but the following jobs have recovered: %s",
        html_url,
        recovered,
    )
    return True


def get_commit_statuses(state: AppState, owner: str, repo: str, sha: str, html_url: str = "") -> Status:
    """Reduce the commit statuses of ``sha`` to one outcome."""
    latest = latest_statuses(state.github.list_statuses(owner, repo, sha))
    LOG.debug("%s latest statuses: %s", html_url, latest)
    states = [s.state for s in latest.values()]
    if all(s == StatusState.SUCCESS for s in states):
        LOG.info("%s has success status", html_url)
        return Status.SUCCESS
    failing = [s for s in latest.values() if s.state in (StatusState.ERROR, StatusState.FAILURE)]
    if failing:
        if rescue_failing_statuses(state, failing, html_url):
            return Status.PENDING
        LOG.info("%s has failed status", html_url)
        return Status.FAILURE
    LOG.info("%s has pending status", html_url)
    return Status.PENDING


def get_commit_checks(state: AppState, owner: str, repo: str, sha: str, html_url: str = "") -> Status:
    """Reduce the check runs of ``sha`` to one outcome."""
    latest = latest_check_runs(state.github.list_check_runs(owner, repo, sha))
    LOG.debug("%s latest checks: %s", html_url, latest)
    if all(c.conclusion == CheckRunConclusion.SUCCESS for c in latest.values()):
        LOG.info("%s has successful checks", html_url)
        return Status.SUCCESS
    if all(c.status == CheckRunStatus.COMPLETED for c in latest.values()):
        LOG.info("%s has unsuccessful checks", html_url)
        return Status.FAILURE
    LOG.info("%s has pending checks", html_url)
    return Status.PENDING


def is_ready_to_merge(state: AppState, pr: PullRequest) -> bool:
    """True if both checks and statuses succeeded on the PR head.

    Raises:
        ChecksFailedError: Check runs failed.
        StatusesFailedError: Statuses failed and were not rescued.
    """
    sha = pr.head.sha
    checks = get_commit_checks(state, pr.owner, pr.repo, sha, pr.html_url)
    if checks == Status.FAILURE:
        raise ChecksFailedError(sha)
    statuses = get_commit_statuses(state, pr.owner, pr.repo, sha, pr.html_url)
    if statuses == Status.FAILURE:
        raise StatusesFailedError(sha)
    return checks == Status.SUCCESS and statuses == Status.SUCCESS

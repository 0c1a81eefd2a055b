"""GitLab API adapter used to probe whether failed jobs were retried."""

import logging
from typing import Any, Dict, List
from urllib.parse import quote

import requests

from mergebot.adapters.base import CIProbeAdapter, GitPlatformError
from mergebot.models import GitlabJob, GitlabPipelineJob

LOG = logging.getLogger("mergebot.adapters.gitlab")

PER_PAGE = 100
REQUEST_TIMEOUT = 30
# Scopes under which a retried job may show up in its pipeline
RETRY_JOB_SCOPES = ["pending", "running", "success", "created"]


class GitLabAdapter(CIProbeAdapter):
    """GitLab REST API (v4) implementation."""

    def __init__(self, url: str, access_token: str | None = None) -> None:
        self._url = url.rstrip("/")
        self._session = requests.Session()
        if access_token:
            self._session.headers["PRIVATE-TOKEN"] = access_token

    @property
    def url(self) -> str:
        return self._url

    def _request(self, path: str, params: Dict[str, Any] | List[tuple] | None = None) -> requests.Response:
        url = f"{self._url}/api/v4{path}"
        try:
            resp = self._session.get(url, params=params, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as e:
            raise GitPlatformError(f"GET {url} failed: {e}") from e
        if resp.status_code >= 400:
            raise GitPlatformError(
                f"{resp.status_code}: {resp.text or resp.reason}",
                status_code=resp.status_code,
                body=resp.text,
            )
        return resp

    def get_job(self, project: str, job_id: int) -> GitlabJob:
        resp = self._request(f"/projects/{quote(project, safe='')}/jobs/{job_id}")
        return GitlabJob.model_validate(resp.json())

    def list_pipeline_jobs(self, project_id: int, pipeline_id: int) -> List[GitlabPipelineJob]:
        jobs: List[GitlabPipelineJob] = []
        page = 1
        while True:
            params = [("scope[]", scope) for scope in RETRY_JOB_SCOPES]
            params += [("per_page", PER_PAGE), ("page", page)]
            data = self._request(f"/projects/{project_id}/pipelines/{pipeline_id}/jobs", params=params).json()
            if not data:
                return jobs
            jobs.extend(GitlabPipelineJob.model_validate(d) for d in data)
            page += 1

"""Unit tests for GitLab adapter (mocked API)."""

from unittest.mock import Mock, patch

import pytest
import requests

from mergebot.adapters.base import GitPlatformError
from mergebot.adapters.gitlab import PER_PAGE, RETRY_JOB_SCOPES, GitLabAdapter
from mergebot.models import GitlabPipelineStatus


@pytest.fixture
def adapter() -> GitLabAdapter:
    return GitLabAdapter("https://gitlab.example/", access_token="glpat")


def _resp(status_code: int = 200, data=None, text: str = "") -> Mock:
    resp = Mock()
    resp.status_code = status_code
    resp.json.return_value = data
    resp.text = text
    resp.reason = ""
    return resp


def test_token_header(adapter: GitLabAdapter) -> None:
    assert adapter._session.headers["PRIVATE-TOKEN"] == "glpat"
    assert adapter.url == "https://gitlab.example"


def test_get_job_quotes_project_path(adapter: GitLabAdapter) -> None:
    data = {"name": "test-linux", "pipeline": {"id": 9, "project_id": 3, "status": "running"}}
    with patch.object(adapter._session, "get", return_value=_resp(data=data)) as get:
        job = adapter.get_job("group/project", 12)

    assert get.call_args[0][0] == "https://gitlab.example/api/v4/projects/group%2Fproject/jobs/12"
    assert job.name == "test-linux"
    assert job.pipeline.status == GitlabPipelineStatus.RUNNING
    assert job.pipeline.project_id == 3


def test_list_pipeline_jobs_pages_until_empty(adapter: GitLabAdapter) -> None:
    first = [{"name": f"job-{i}", "status": "success"} for i in range(PER_PAGE)]
    second = [{"name": "test-linux", "status": "pending"}]
    pages = [_resp(data=first), _resp(data=second), _resp(data=[])]
    with patch.object(adapter._session, "get", side_effect=pages) as get:
        jobs = adapter.list_pipeline_jobs(3, 9)

    assert len(jobs) == PER_PAGE + 1
    assert jobs[-1].name == "test-linux"
    params = get.call_args_list[0][1]["params"]
    assert [v for k, v in params if k == "scope[]"] == RETRY_JOB_SCOPES
    assert ("page", 1) in params
    assert get.call_count == 3


def test_error_status_raises(adapter: GitLabAdapter) -> None:
    with patch.object(adapter._session, "get", return_value=_resp(403, text="403 Forbidden")):
        with pytest.raises(GitPlatformError) as exc_info:
            adapter.get_job("group/project", 12)
    assert exc_info.value.status_code == 403


def test_transport_error_raises(adapter: GitLabAdapter) -> None:
    with patch.object(adapter._session, "get", side_effect=requests.ConnectionError("refused")):
        with pytest.raises(GitPlatformError, match="failed"):
            adapter.list_pipeline_jobs(3, 9)

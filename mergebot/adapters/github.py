"""GitHub API adapter.

Authenticates either with a static token or as a GitHub App: a short-lived
JWT (RS256) is exchanged for an installation access token of the
configured installation login, which is cached until shortly before it
expires.
"""

import base64
import logging
import threading
import time
from datetime import UTC, datetime, timedelta
from typing import Any, Dict, List, Optional

import jwt
import requests

from mergebot.adapters.base import GitPlatformAdapter, GitPlatformError
from mergebot.models import CheckRun, CommitStatus, Contents, PullRequest

LOG = logging.getLogger("mergebot.adapters.github")

PER_PAGE = 100
REQUEST_TIMEOUT = 30
# Attempts per request when the API times out; other errors are not retried
MAX_TIMEOUT_RETRIES = 5
# Lifetime assumed when the API does not report expires_at
DEFAULT_TOKEN_LIFETIME = timedelta(minutes=40)
TOKEN_EXPIRY_MARGIN = timedelta(minutes=5)
JWT_LIFETIME_SECONDS = 600


def _parse_iso(s: str) -> datetime:
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


def _error_message(resp: requests.Response) -> str:
    msg = resp.text or resp.reason or str(resp.status_code)
    try:
        msg = resp.json().get("message", msg)
    except ValueError:
        pass
    return msg


class GitHubAdapter(GitPlatformAdapter):
    """GitHub REST API implementation."""

    def __init__(
        self,
        api_url: str = "https://api.github.com",
        token: str | None = None,
        app_id: int | None = None,
        private_key: bytes | None = None,
        installation_login: str = "",
    ) -> None:
        if not token and not (app_id and private_key and installation_login):
            raise ValueError("Either a token or app_id, private_key and installation_login are required")
        self._api_url = api_url.rstrip("/")
        self._static_token = token
        self._app_id = app_id
        self._private_key = private_key
        self._installation_login = installation_login
        self._session = requests.Session()
        self._session.headers["Accept"] = "application/vnd.github.v3+json"
        self._token_lock = threading.Lock()
        self._cached_token: str | None = None
        self._cached_token_expires_at: datetime | None = None

    # -- authentication --

    def _app_jwt(self) -> str:
        now = int(time.time())
        payload = {"iat": now - 60, "exp": now + JWT_LIFETIME_SECONDS, "iss": str(self._app_id)}
        return jwt.encode(payload, self._private_key, algorithm="RS256")

    def _fetch_installation_token(self) -> tuple[str, datetime]:
        headers = {"Authorization": f"Bearer {self._app_jwt()}"}
        installations = self._send("GET", "/app/installations", headers=headers).json() or []
        installation_id = None
        for installation in installations:
            account = installation.get("account") or {}
            if account.get("login") == self._installation_login:
                installation_id = installation["id"]
                break
        if installation_id is None:
            raise GitPlatformError(f"No GitHub App installation found for {self._installation_login}")
        data = self._send(
            "POST",
            f"/app/installations/{installation_id}/access_tokens",
            headers=headers,
        ).json()
        expires_at = data.get("expires_at")
        if expires_at:
            expiry = _parse_iso(expires_at)
        else:
            expiry = datetime.now(UTC) + DEFAULT_TOKEN_LIFETIME
        return data["token"], expiry

    def auth_token(self) -> str:
        """Return a valid access token, refreshing the cached one if needed."""
        if self._static_token:
            return self._static_token
        with self._token_lock:
            now = datetime.now(UTC)
            if (
                self._cached_token is not None
                and self._cached_token_expires_at is not None
                and now < self._cached_token_expires_at - TOKEN_EXPIRY_MARGIN
            ):
                return self._cached_token
            token, expiry = self._fetch_installation_token()
            self._cached_token = token
            self._cached_token_expires_at = expiry
            LOG.info("Refreshed installation token (expires at %s)", expiry.isoformat())
            return token

    # -- transport --

    def _send(
        self,
        method: str,
        path: str,
        params: Dict[str, Any] | None = None,
        json: Dict[str, Any] | None = None,
        headers: Dict[str, str] | None = None,
        allow_status: tuple[int, ...] = (),
    ) -> requests.Response:
        """Send a request, retrying on timeout; raise GitPlatformError on >= 400."""
        url = f"{self._api_url}{path}" if path.startswith("/") else path
        attempt = 0
        while True:
            attempt += 1
            try:
                resp = self._session.request(
                    method, url, params=params, json=json, headers=headers, timeout=REQUEST_TIMEOUT
                )
                break
            except requests.Timeout as e:
                if attempt >= MAX_TIMEOUT_RETRIES:
                    raise GitPlatformError(f"{method} {url} timed out after {attempt} attempts") from e
                LOG.warning("%s %s timed out (attempt %s/%s), retrying", method, url, attempt, MAX_TIMEOUT_RETRIES)
            except requests.RequestException as e:
                raise GitPlatformError(f"{method} {url} failed: {e}") from e
        LOG.debug("%s %s -> %s", method, url, resp.status_code)
        if resp.status_code >= 400 and resp.status_code not in allow_status:
            msg = _error_message(resp)
            raise GitPlatformError(f"{resp.status_code}: {msg}", status_code=resp.status_code, body=msg)
        return resp

    def _request(
        self,
        method: str,
        path: str,
        params: Dict[str, Any] | None = None,
        json: Dict[str, Any] | None = None,
        allow_status: tuple[int, ...] = (),
    ) -> requests.Response:
        headers = {"Authorization": f"token {self.auth_token()}"}
        return self._send(method, path, params=params, json=json, headers=headers, allow_status=allow_status)

    def _paginate(self, path: str, key: str | None = None, params: Dict[str, Any] | None = None) -> List[Any]:
        """Collect all pages of a list endpoint (100 per page)."""
        items: List[Any] = []
        page = 1
        while True:
            query = dict(params or {}, per_page=PER_PAGE, page=page)
            data = self._request("GET", path, params=query).json()
            if key:
                batch = (data or {}).get(key) or []
            else:
                batch = data or []
            items.extend(batch)
            if len(batch) < PER_PAGE:
                return items
            page += 1

    # -- operations --

    def get_pull_request(self, owner: str, repo: str, number: int) -> PullRequest:
        resp = self._request("GET", f"/repos/{owner}/{repo}/pulls/{number}")
        return PullRequest.model_validate(resp.json())

    def get_pull_request_by_head_sha(self, owner: str, repo: str, sha: str) -> Optional[PullRequest]:
        # The list endpoint can't filter by SHA
        for item in self._paginate(f"/repos/{owner}/{repo}/pulls", params={"state": "open"}):
            if (item.get("head") or {}).get("sha") == sha:
                return self.get_pull_request(owner, repo, item["number"])
        return None

    def merge_pull_request(self, owner: str, repo: str, number: int, sha: str) -> None:
        self._request(
            "PUT",
            f"/repos/{owner}/{repo}/pulls/{number}/merge",
            json={"sha": sha, "merge_method": "squash"},
        )
        LOG.info("Merged %s/%s#%s at %s", owner, repo, number, sha)

    def get_file_contents(self, owner: str, repo: str, path: str, ref: str) -> str:
        resp = self._request("GET", f"/repos/{owner}/{repo}/contents/{path}", params={"ref": ref})
        contents = Contents.model_validate(resp.json())
        raw = contents.content.replace("\n", "")
        try:
            return base64.b64decode(raw).decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            raise GitPlatformError(f"Failed to decode {owner}/{repo}/{path}@{ref}: {e}") from e

    def list_statuses(self, owner: str, repo: str, sha: str) -> List[CommitStatus]:
        data = self._paginate(f"/repos/{owner}/{repo}/commits/{sha}/statuses")
        return [CommitStatus.model_validate(d) for d in data]

    def list_check_runs(self, owner: str, repo: str, sha: str) -> List[CheckRun]:
        data = self._paginate(f"/repos/{owner}/{repo}/commits/{sha}/check-runs", key="check_runs")
        return [CheckRun.model_validate(d) for d in data]

    def create_comment(self, owner: str, repo: str, number: int, body: str) -> None:
        self._request("POST", f"/repos/{owner}/{repo}/issues/{number}/comments", json={"body": body})

    def is_org_member(self, org: str, login: str) -> bool:
        resp = self._request("GET", f"/orgs/{org}/members/{login}", allow_status=(404,))
        return resp.status_code == 204

    def acknowledge_comment(self, owner: str, repo: str, comment_id: int) -> None:
        self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues/comments/{comment_id}/reactions",
            json={"content": "eyes"},
        )

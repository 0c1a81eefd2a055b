"""Resolution of the PRs that depend on a given PR.

Every companion named in a PR's description depends on that PR directly.
When several companions are named, each companion's Cargo.lock is read at
its head: a git source pointing at another companion's repository makes
that companion a (lockfile-inferred) dependency as well.
"""

import logging
from typing import List, Sequence

from mergebot.adapters.base import GitPlatformError
from mergebot.errors import MessageError
from mergebot.models import PullRequest
from mergebot.services.companions import CompanionRef, pr_companions
from mergebot.services.git.lockfile import LOCKFILE_NAME, LockfileError, references_source
from mergebot.services.store import MergeRequest, MergeRequestDependency
from mergebot.state import AppState

LOG = logging.getLogger("mergebot.services.dependents")


def canonical_source_url(state: AppState, owner: str, repo: str) -> str:
    """Lockfile source URL of a GitHub repository."""
    github = state.config.github
    return f"{github.source_prefix.rstrip('/')}/{owner}/{repo}{github.source_suffix}"


def dependency_on(pr: PullRequest, is_directly_referenced: bool) -> MergeRequestDependency:
    return MergeRequestDependency(
        sha=pr.head.sha,
        owner=pr.owner,
        repo=pr.repo,
        number=pr.number,
        html_url=pr.html_url,
        is_directly_referenced=is_directly_referenced,
    )


def merge_request_for(
    pr: PullRequest,
    requested_by: str,
    dependencies: List[MergeRequestDependency] | None,
) -> MergeRequest:
    return MergeRequest(
        sha=pr.head.sha,
        owner=pr.owner,
        repo=pr.repo,
        number=pr.number,
        html_url=pr.html_url,
        requested_by=requested_by,
        was_updated=False,
        dependencies=dependencies,
    )


def _lockfile_text(state: AppState, pr: PullRequest) -> str:
    """Lockfile of ``pr`` at its head; empty if the repository has none."""
    try:
        return state.github.get_file_contents(pr.owner, pr.repo, LOCKFILE_NAME, pr.head.sha)
    except GitPlatformError as e:
        if e.status_code != 404:
            raise
        LOG.info("%s has no %s", pr.html_url, LOCKFILE_NAME)
        return ""


def resolve_pr_dependents(
    state: AppState,
    pr: PullRequest,
    requested_by: str,
    trail: Sequence[tuple[str, str]] = (),
) -> List[MergeRequest]:
    """Build the pending merge requests of the companions of ``pr``.

    Args:
        state: Application state (API client, config).
        pr: PR whose dependents are resolved.
        requested_by: Login recorded as requester of the dependents.
        trail: (owner, repo) pairs of the PRs already visited.

    Returns:
        One MergeRequest per companion, not yet updated; empty if ``pr``
        names no companions.
    """
    companions = [
        c for c in pr_companions(pr, trail) if (c.owner, c.repo) != (pr.owner, pr.repo)
    ]
    if not companions:
        return []

    base_dependency = dependency_on(pr, is_directly_referenced=True)

    if len(companions) == 1:
        comp = companions[0]
        comp_pr = state.github.get_pull_request(comp.owner, comp.repo, comp.number)
        dependents = [merge_request_for(comp_pr, requested_by, [base_dependency])]
        LOG.info("Dependents of %s: %s", pr.html_url, [d.html_url for d in dependents])
        return dependents

    dependents: List[MergeRequest] = []
    for comp in companions:
        comp_pr = state.github.get_pull_request(comp.owner, comp.repo, comp.number)
        lockfile = _lockfile_text(state, comp_pr)
        dependencies = [base_dependency]
        for other in _other_companions(companions, comp_pr):
            try:
                referenced = references_source(lockfile, canonical_source_url(state, other.owner, other.repo))
            except LockfileError as e:
                raise MessageError(f"Failed to parse lockfile of {comp_pr.html_url}: {e}") from e
            if referenced:
                other_pr = state.github.get_pull_request(other.owner, other.repo, other.number)
                dependencies.append(dependency_on(other_pr, is_directly_referenced=False))
        dependents.append(merge_request_for(comp_pr, requested_by, dependencies))

    LOG.info("Dependents of %s: %s", pr.html_url, [d.html_url for d in dependents])
    return dependents


def _other_companions(companions: List[CompanionRef], comp_pr: PullRequest) -> List[CompanionRef]:
    return [c for c in companions if (c.owner, c.repo) != (comp_pr.owner, comp_pr.repo)]

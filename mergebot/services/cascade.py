"""Cascade of updates and merges after a PR is merged.

The dependents of the merged PR are taken from its description (fresh) and
from the store (entries registered earlier). Each alive dependent is
updated to pick up the merge and merged if it is ready; entries that
depend on the updated dependents are then re-checked as if a status had
arrived.
"""

import logging
from typing import Dict, List, Tuple

from mergebot.errors import PIPELINE_ERRORS, classify_error
from mergebot.models import PullRequest
from mergebot.services.cleanup import cancel_after_error
from mergebot.services.dependents import resolve_pr_dependents
from mergebot.services.pipeline import (
    DEFAULT_QUEUED_MESSAGE,
    process_commit_checks_and_statuses,
    update_then_merge,
)
from mergebot.services.store import MergeRequest, key_for
from mergebot.state import AppState

LOG = logging.getLogger("mergebot.services.cascade")

Identity = Tuple[str, str, int]


def _collect_alive_dependents(
    state: AppState, pr: PullRequest, fresh: List[MergeRequest]
) -> Dict[Identity, MergeRequest]:
    """Merge fresh dependents with stored entries that depend on ``pr``.

    Stored entries whose only reason to depend on ``pr`` was removed from
    their description are dropped or detached from ``pr``.
    """
    fresh_by_identity = {mr.identity: mr for mr in fresh}
    # Description order first; stored entries follow
    alive: Dict[Identity, MergeRequest] = dict(fresh_by_identity)

    for key, stored in state.store.iterate():
        if not stored.depends_on(pr.owner, pr.repo, pr.number):
            continue
        edges = [d for d in stored.dependencies or [] if d.identity == pr.identity]
        others = [d for d in stored.dependencies or [] if d.identity != pr.identity]
        fresh_mr = fresh_by_identity.get(stored.identity)

        if fresh_mr is not None:
            LOG.info("%s is still a dependent of %s", stored.html_url, pr.html_url)
            alive[stored.identity] = stored.model_copy(update={"dependencies": fresh_mr.dependencies})
            continue

        if any(d.is_directly_referenced for d in edges):
            if not others:
                LOG.info(
                    "Removing %s: it no longer references %s in its description",
                    stored.html_url,
                    pr.html_url,
                )
                state.store.delete(key)
            else:
                LOG.info("Dropping dangling reference of %s to %s", stored.html_url, pr.html_url)
                stored.dependencies = others
                state.store.put(stored)
            continue

        # Inferred from the lockfile: the stored row forgets the merged PR,
        # the dependent is still updated so its lockfile picks up the merge
        LOG.info("%s depends on %s through its lockfile only", stored.html_url, pr.html_url)
        state.store.put(stored.model_copy(update={"dependencies": others or None}))
        alive[stored.identity] = stored

    return alive


def _all_dependencies_ready(state: AppState, pr: PullRequest, mr: MergeRequest) -> bool:
    for dependency in mr.dependencies or []:
        if dependency.identity == pr.identity:
            continue
        dependency_pr = state.github.get_pull_request(dependency.owner, dependency.repo, dependency.number)
        if not dependency_pr.merged:
            LOG.info("Dependency %s of %s is not merged yet", dependency.html_url, mr.html_url)
            return False
    return True


def process_dependents_after_merge(state: AppState, pr: PullRequest, requested_by: str) -> None:
    """Update and merge the dependents of the just merged ``pr``.

    Errors of a single dependent cancel that dependent and are reported on
    it; the cascade goes on with the others.
    """
    if pr.identity in state.cascade_guard:
        LOG.info("Dependents of %s were already processed", pr.html_url)
        return
    state.cascade_guard.add(pr.identity)

    LOG.info("Processing dependents of %s after merge", pr.html_url)
    fresh = resolve_pr_dependents(state, pr, requested_by)
    alive = _collect_alive_dependents(state, pr, fresh)
    LOG.info("Alive dependents of %s: %s", pr.html_url, [mr.html_url for mr in alive.values()])

    updated: List[Tuple[str, MergeRequest]] = []
    for dependent in alive.values():
        try:
            ready = _all_dependencies_ready(state, pr, dependent)
            new_sha = update_then_merge(
                state,
                dependent,
                DEFAULT_QUEUED_MESSAGE,
                should_register=True,
                all_dependencies_ready=ready,
            )
        except PIPELINE_ERRORS as e:
            LOG.error("Failed to update %s after merge of %s: %s", dependent.html_url, pr.html_url, e)
            cancel_after_error(
                state, dependent.sha, dependent.owner, dependent.repo, dependent.number, classify_error(e)
            )
            continue
        if new_sha is not None:
            updated.append((new_sha, dependent))

    to_check: Dict[str, MergeRequest] = {}
    for key, stored in state.store.iterate():
        changed = False
        for dependency in stored.dependencies or []:
            for new_sha, dependent in updated:
                if dependency.identity == dependent.identity:
                    LOG.info(
                        "Dependency of %s on %s moved to %s",
                        stored.html_url,
                        dependent.html_url,
                        new_sha,
                    )
                    dependency.sha = new_sha
                    changed = True
        if changed:
            state.store.put(stored)
            to_check[key_for(stored)] = stored
        elif stored.depends_on(pr.owner, pr.repo, pr.number):
            to_check[key_for(stored)] = stored

    for mr in to_check.values():
        try:
            process_commit_checks_and_statuses(state, mr.sha, mr.owner, mr.repo)
        except PIPELINE_ERRORS as e:
            LOG.error("Failed to check %s after merge of %s: %s", mr.html_url, pr.html_url, e)
            cancel_after_error(state, mr.sha, mr.owner, mr.repo, mr.number, classify_error(e))

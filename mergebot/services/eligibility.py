"""Checks that a PR and all of its companions can be merged by the bot."""

import logging
from typing import Sequence

from mergebot.errors import CompanionIneligibleError, NotMergeableError
from mergebot.models import PullRequest, StatusState
from mergebot.services.companions import pr_companions
from mergebot.services.statuses import latest_statuses
from mergebot.state import AppState

LOG = logging.getLogger("mergebot.services.eligibility")

REVIEWS_STATUS_CONTEXT = "Check reviews"


def _reviews_approved(state: AppState, pr: PullRequest) -> bool:
    statuses = latest_statuses(state.github.list_statuses(pr.owner, pr.repo, pr.head.sha))
    reviews = statuses.get(REVIEWS_STATUS_CONTEXT)
    return reviews is not None and reviews.state == StatusState.SUCCESS


def check_all_companions_are_mergeable(
    state: AppState,
    pr: PullRequest,
    requested_by: str,
    trail: Sequence[tuple[str, str]] = (),
) -> None:
    """Recursively verify every companion of ``pr``.

    Raises:
        CompanionIneligibleError: A companion can't be updated or merged by
            the bot.
    """
    next_trail = list(trail) + [(pr.owner, pr.repo)]
    for comp in pr_companions(pr, trail):
        comp_pr = state.github.get_pull_request(comp.owner, comp.repo, comp.number)
        if comp_pr.merged:
            LOG.info("Companion %s of %s is already merged", comp_pr.html_url, pr.html_url)
            continue

        if comp_pr.user is None or comp_pr.user.is_bot:
            raise CompanionIneligibleError(
                f"Companion {comp_pr.html_url} was opened by a bot account, whose branch can't be updated"
            )

        head_owner = comp_pr.head.repo.owner.login if comp_pr.head.repo else None
        if not comp_pr.maintainer_can_modify and head_owner != comp_pr.owner:
            raise CompanionIneligibleError(
                f"Companion {comp_pr.html_url} is not editable by maintainers and its branch is not in the "
                f"{comp_pr.owner} organization. Please allow edits from maintainers on that PR."
            )

        if not state.config.bot.disable_org_checks and not _reviews_approved(state, comp_pr):
            raise CompanionIneligibleError(
                f'Companion {comp_pr.html_url} does not have a successful "{REVIEWS_STATUS_CONTEXT}" status'
            )

        check_all_companions_are_mergeable(state, comp_pr, requested_by, next_trail)


def check_merge_is_allowed(
    state: AppState,
    pr: PullRequest,
    requested_by: str,
    trail: Sequence[tuple[str, str]] = (),
) -> None:
    """Raise if ``pr`` or any of its companions can't be merged now."""
    if not pr.mergeable:
        raise NotMergeableError(f"Github API says {pr.html_url} is not mergeable")
    LOG.info("%s is mergeable", pr.html_url)
    check_all_companions_are_mergeable(state, pr, requested_by, trail)

"""Tests for the merge-eligibility gate."""

import pytest

from conftest import FakeGitHub, make_pr, status
from mergebot.errors import CompanionIneligibleError, NotMergeableError
from mergebot.services.eligibility import REVIEWS_STATUS_CONTEXT, check_merge_is_allowed
from mergebot.state import AppState


def _approve(github: FakeGitHub, sha: str) -> None:
    github.statuses[sha] = [status(REVIEWS_STATUS_CONTEXT, "success")]


class TestCheckMergeIsAllowed:
    """check_merge_is_allowed on the PR and its companions."""

    def test_not_mergeable(self, state: AppState) -> None:
        with pytest.raises(NotMergeableError, match="not mergeable"):
            check_merge_is_allowed(state, make_pr(mergeable=False), "alice")

    def test_mergeable_unknown_is_not_mergeable(self, state: AppState) -> None:
        with pytest.raises(NotMergeableError):
            check_merge_is_allowed(state, make_pr(mergeable=None), "alice")

    def test_no_companions(self, state: AppState) -> None:
        check_merge_is_allowed(state, make_pr(), "alice")

    def test_eligible_companion(self, state: AppState, github: FakeGitHub) -> None:
        github.add_pr(make_pr(repo="b", number=2, sha="B1"))
        _approve(github, "B1")
        check_merge_is_allowed(state, make_pr(repo="a", body="companion: org/b#2"), "alice")

    def test_companion_needs_reviews(self, state: AppState, github: FakeGitHub) -> None:
        github.add_pr(make_pr(repo="b", number=2, sha="B1"))
        github.statuses["B1"] = [status(REVIEWS_STATUS_CONTEXT, "pending")]
        with pytest.raises(CompanionIneligibleError, match=REVIEWS_STATUS_CONTEXT):
            check_merge_is_allowed(state, make_pr(repo="a", body="companion: org/b#2"), "alice")

    def test_reviews_not_required_without_org_checks(self, state: AppState, github: FakeGitHub) -> None:
        state.config.bot.disable_org_checks = True
        github.add_pr(make_pr(repo="b", number=2, sha="B1"))
        check_merge_is_allowed(state, make_pr(repo="a", body="companion: org/b#2"), "alice")

    def test_companion_opened_by_bot(self, state: AppState, github: FakeGitHub) -> None:
        github.add_pr(make_pr(repo="b", number=2, sha="B1", author="dependabot", author_type="Bot"))
        _approve(github, "B1")
        with pytest.raises(CompanionIneligibleError, match="bot"):
            check_merge_is_allowed(state, make_pr(repo="a", body="companion: org/b#2"), "alice")

    def test_companion_not_editable(self, state: AppState, github: FakeGitHub) -> None:
        """A fork that maintainers can't push to is rejected."""
        github.add_pr(make_pr(repo="b", number=2, sha="B1", maintainer_can_modify=False))
        _approve(github, "B1")
        with pytest.raises(CompanionIneligibleError, match="maintainers"):
            check_merge_is_allowed(state, make_pr(repo="a", body="companion: org/b#2"), "alice")

    def test_companion_branch_in_org(self, state: AppState, github: FakeGitHub) -> None:
        """A branch in the org's own repository needs no maintainer edits."""
        github.add_pr(make_pr(repo="b", number=2, sha="B1", maintainer_can_modify=False, head_owner="org"))
        _approve(github, "B1")
        check_merge_is_allowed(state, make_pr(repo="a", body="companion: org/b#2"), "alice")

    def test_merged_companion_skipped(self, state: AppState, github: FakeGitHub) -> None:
        github.add_pr(make_pr(repo="b", number=2, sha="B1", merged=True, author_type="Bot"))
        check_merge_is_allowed(state, make_pr(repo="a", body="companion: org/b#2"), "alice")

    def test_nested_companion_checked(self, state: AppState, github: FakeGitHub) -> None:
        """Companions of companions are checked too."""
        github.add_pr(make_pr(repo="b", number=2, sha="B1", body="companion: org/c#3"))
        github.add_pr(make_pr(repo="c", number=3, sha="C1", maintainer_can_modify=False))
        _approve(github, "B1")
        _approve(github, "C1")
        with pytest.raises(CompanionIneligibleError, match="org/c/pull/3"):
            check_merge_is_allowed(state, make_pr(repo="a", body="companion: org/b#2"), "alice")

    def test_cycle_terminates(self, state: AppState, github: FakeGitHub) -> None:
        github.add_pr(make_pr(repo="b", number=2, sha="B1", body="companion: org/a#1"))
        _approve(github, "B1")
        check_merge_is_allowed(state, make_pr(repo="a", number=1, body="companion: org/b#2"), "alice")

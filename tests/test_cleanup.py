"""Tests for entry cleanup and error reporting."""

from unittest.mock import MagicMock

import pytest

from conftest import FakeGitHub
from mergebot.adapters.base import GitPlatformError
from mergebot.errors import HeadChangedError, MergeCancelOutcome, MessageError
from mergebot.services.cleanup import CleanupReason, cancel_after_error, cleanup_merge_request, handle_error
from mergebot.services.store import MergeRequest, MergeRequestDependency
from mergebot.state import AppState


def _mr(repo: str, number: int, sha: str, deps: list | None = None, was_updated: bool = False) -> MergeRequest:
    return MergeRequest(
        sha=sha,
        owner="org",
        repo=repo,
        number=number,
        html_url=f"https://github.com/org/{repo}/pull/{number}",
        requested_by="alice",
        was_updated=was_updated,
        dependencies=deps,
    )


def _dep(repo: str, number: int, sha: str, direct: bool = True) -> MergeRequestDependency:
    return MergeRequestDependency(
        sha=sha,
        owner="org",
        repo=repo,
        number=number,
        html_url=f"https://github.com/org/{repo}/pull/{number}",
        is_directly_referenced=direct,
    )


@pytest.fixture
def chain(state: AppState) -> AppState:
    """a#1 <- b#2 <- c#3, plus an unrelated x#9."""
    state.store.put(_mr("a", 1, "A1"))
    state.store.put(_mr("b", 2, "B1", [_dep("a", 1, "A1")]))
    state.store.put(_mr("c", 3, "C1", [_dep("b", 2, "B1", direct=False)]))
    state.store.put(_mr("x", 9, "X1"))
    return state


def _keys(state: AppState) -> list:
    return [k for k, _ in state.store.iterate()]


class TestCleanupMergeRequest:
    """cleanup_merge_request per reason."""

    def test_error_cancels_dependents_recursively(self, chain: AppState) -> None:
        cleanup_merge_request(chain, "A1", "org", "a", 1, CleanupReason.ERROR)
        assert _keys(chain) == ["org/x@X1"]
        assert chain.cleanup_guard == set()

    def test_cancel_cancels_dependents(self, chain: AppState) -> None:
        cleanup_merge_request(chain, "B1", "org", "b", 2, CleanupReason.CANCELLED)
        assert _keys(chain) == ["org/a@A1", "org/x@X1"]

    def test_after_merge_leaves_dependents(self, chain: AppState) -> None:
        cleanup_merge_request(chain, "A1", "org", "a", 1, CleanupReason.AFTER_MERGE)
        assert _keys(chain) == ["org/b@B1", "org/c@C1", "org/x@X1"]

    def test_after_sha_update_repoints_dependents(self, chain: AppState) -> None:
        cleanup_merge_request(chain, "B1", "org", "b", 2, CleanupReason.AFTER_SHA_UPDATE, updated_sha="B2")
        assert "org/b@B1" not in _keys(chain)
        c = chain.store.get("org/c@C1")
        assert c.dependencies[0].sha == "B2"
        assert c.dependencies[0].is_directly_referenced is False

    def test_after_sha_update_requires_sha(self, chain: AppState) -> None:
        with pytest.raises(ValueError):
            cleanup_merge_request(chain, "B1", "org", "b", 2, CleanupReason.AFTER_SHA_UPDATE)

    def test_removes_every_entry_of_the_pr(self, state: AppState) -> None:
        """Stale entries of the same PR under other SHAs go too."""
        state.store.put(_mr("a", 1, "OLD"))
        state.store.put(_mr("a", 1, "A1"))
        cleanup_merge_request(state, "A1", "org", "a", 1, CleanupReason.CANCELLED)
        assert _keys(state) == []

    def test_missing_entry_is_fine(self, state: AppState) -> None:
        cleanup_merge_request(state, "NOPE", "org", "a", 1, CleanupReason.ERROR)

    def test_mutual_dependents_terminate(self, state: AppState) -> None:
        """Two entries depending on each other are both cancelled once."""
        state.store.put(_mr("a", 1, "A1", [_dep("b", 2, "B1")]))
        state.store.put(_mr("b", 2, "B1", [_dep("a", 1, "A1")]))
        cleanup_merge_request(state, "A1", "org", "a", 1, CleanupReason.ERROR)
        assert _keys(state) == []

    def test_guard_skips_side_effects(self, chain: AppState) -> None:
        """An already visited PR is deleted but its dependents are left alone."""
        chain.cleanup_guard.add(("org", "a", 1, "A1"))
        cleanup_merge_request(chain, "A1", "org", "a", 1, CleanupReason.ERROR)
        assert _keys(chain) == ["org/b@B1", "org/c@C1", "org/x@X1"]


class TestHandleError:
    def test_cancelled_prefix(self, state: AppState, github: FakeGitHub) -> None:
        err = MessageError("boom").with_scope("org", "a", 1)
        handle_error(state, MergeCancelOutcome.WAS_CANCELLED, err)
        assert github.comments_on("org", "a", 1) == ["Merge cancelled due to error. Error: boom"]

    def test_plain_text_when_not_cancelled(self, state: AppState, github: FakeGitHub) -> None:
        err = MessageError("boom").with_scope("org", "a", 1)
        handle_error(state, MergeCancelOutcome.SHA_NOT_FOUND, err)
        assert github.comments_on("org", "a", 1) == ["boom"]

    def test_unscoped_error_not_posted(self, state: AppState, github: FakeGitHub) -> None:
        handle_error(state, MergeCancelOutcome.WAS_NOT_CANCELLED, MessageError("boom"))
        assert github.comments == []

    def test_comment_failure_is_logged(self, state: AppState, github: FakeGitHub) -> None:
        github.create_comment = MagicMock(side_effect=GitPlatformError("down"))
        handle_error(state, MergeCancelOutcome.WAS_CANCELLED, MessageError("boom").with_scope("org", "a", 1))
        github.create_comment.assert_called_once()


class TestCancelAfterError:
    def test_removes_and_reports(self, chain: AppState, github: FakeGitHub) -> None:
        cancel_after_error(chain, "B1", "org", "b", 2, HeadChangedError("B1", "B9"))
        assert _keys(chain) == ["org/a@A1", "org/x@X1"]
        [comment] = github.comments_on("org", "b", 2)
        assert comment.startswith("Merge cancelled due to error.")
        assert "B9" in comment

"""Tests for companion parsing in PR descriptions."""

from conftest import make_pr
from mergebot.services.companions import (
    CompanionRef,
    parse_all_companions,
    parse_companion_line,
    pr_companions,
)


class TestParseCompanionLine:
    """parse_companion_line: long and short forms."""

    def test_long_form(self) -> None:
        ref = parse_companion_line("companion: https://github.com/org/b/pull/2")
        assert ref == CompanionRef("https://github.com/org/b/pull/2", "org", "b", 2)

    def test_short_form(self) -> None:
        ref = parse_companion_line("Companion org/b#2")
        assert ref == CompanionRef("https://github.com/org/b/pull/2", "org", "b", 2)

    def test_case_insensitive_prefix(self) -> None:
        assert parse_companion_line("COMPANION - org/b#2") is not None

    def test_without_prefix(self) -> None:
        """A bare reference is not a companion."""
        assert parse_companion_line("see org/b#2") is None
        assert parse_companion_line("https://github.com/org/b/pull/2") is None

    def test_prefix_followed_by_word(self) -> None:
        """Letters between the prefix and the reference break the match."""
        assert parse_companion_line("companion is org/b#2") is None


class TestParseAllCompanions:
    def test_multiple_lines(self) -> None:
        body = "Fixes stuff\ncompanion: org/b#2\r\ncompanion: https://github.com/org/c/pull/3\n"
        refs = parse_all_companions([], body)
        assert [r.identity for r in refs] == [("org", "b", 2), ("org", "c", 3)]

    def test_duplicates_dropped(self) -> None:
        body = "companion: org/b#2\ncompanion: https://github.com/org/b/pull/2"
        assert len(parse_all_companions([], body)) == 1

    def test_trail_filters_repositories(self) -> None:
        body = "companion: org/a#1\ncompanion: org/c#3"
        refs = parse_all_companions([("org", "a")], body)
        assert [r.identity for r in refs] == [("org", "c", 3)]


class TestPrCompanions:
    """pr_companions threads the PR's repository into the trail."""

    def test_cycle_is_cut(self) -> None:
        """a#1 names b#2 and b#2 names a#1: walking from a, b names nothing."""
        a = make_pr(repo="a", number=1, body="companion: org/b#2")
        b = make_pr(repo="b", number=2, body="companion: org/a#1")

        a_companions = pr_companions(a, [])
        assert [c.identity for c in a_companions] == [("org", "b", 2)]
        assert pr_companions(b, [("org", "a")]) == []

    def test_self_reference_ignored(self) -> None:
        pr = make_pr(repo="a", number=1, body="companion: org/a#7")
        assert pr_companions(pr) == []

    def test_empty_body(self) -> None:
        assert pr_companions(make_pr(body=None)) == []

"""Companion references in PR descriptions.

A line such as ``companion: https://github.com/org/repo/pull/12`` or
``Companion org/repo#12`` names a PR in another repository that has to be
merged together with (after) the one being described.
"""

import re
from dataclasses import dataclass
from typing import List, Sequence

from mergebot.models import PullRequest

HTML_URL_HOST = "https://github.com"

_PREFIX = r"companion[^a-z\n]*"
_OWNER_AND_REPO = r"(?P<owner>[^\s/]+)/(?P<repo>[^\s/#]+)"

COMPANION_LONG_RE = re.compile(
    _PREFIX + r"(?P<html_url>https://[^\s]+?/" + _OWNER_AND_REPO + r"/pull/(?P<number>[0-9]+))",
    re.IGNORECASE,
)
COMPANION_SHORT_RE = re.compile(_PREFIX + _OWNER_AND_REPO + r"#(?P<number>[0-9]+)", re.IGNORECASE)

Trail = Sequence[tuple[str, str]]


@dataclass(frozen=True)
class CompanionRef:
    """PR named by a companion line."""

    html_url: str
    owner: str
    repo: str
    number: int

    @property
    def identity(self) -> tuple[str, str, int]:
        return (self.owner, self.repo, self.number)


def parse_companion_line(line: str) -> CompanionRef | None:
    """Parse one line; the long form wins over the short one."""
    match = COMPANION_LONG_RE.search(line)
    if match:
        return CompanionRef(
            html_url=match.group("html_url"),
            owner=match.group("owner"),
            repo=match.group("repo"),
            number=int(match.group("number")),
        )
    match = COMPANION_SHORT_RE.search(line)
    if match:
        owner, repo, number = match.group("owner"), match.group("repo"), int(match.group("number"))
        return CompanionRef(
            html_url=f"{HTML_URL_HOST}/{owner}/{repo}/pull/{number}",
            owner=owner,
            repo=repo,
            number=number,
        )
    return None


def parse_all_companions(trail: Trail, body: str) -> List[CompanionRef]:
    """All companions named in ``body`` whose repository is not in ``trail``.

    Duplicates are dropped, first occurrence kept.
    """
    seen = set()
    companions: List[CompanionRef] = []
    for line in body.splitlines():
        ref = parse_companion_line(line)
        if ref is None or (ref.owner, ref.repo) in trail or ref.identity in seen:
            continue
        seen.add(ref.identity)
        companions.append(ref)
    return companions


def pr_companions(pr: PullRequest, trail: Trail = ()) -> List[CompanionRef]:
    """Companions of ``pr``; its own repository is added to the trail."""
    next_trail = list(trail) + [(pr.owner, pr.repo)]
    return parse_all_companions(next_trail, pr.body or "")

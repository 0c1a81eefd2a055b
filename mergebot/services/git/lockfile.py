"""Cargo.lock inspection and restricted lockfile updates."""

import logging
import tomllib
from pathlib import Path
from typing import Iterable, List

from mergebot.services.git._run import _run_cmd

LOCKFILE_NAME = "Cargo.lock"


class LockfileError(ValueError):
    """Raised when a lockfile can't be parsed."""

    pass


def source_url(source: str) -> str | None:
    """Repository URL of a git package source, without query or revision.

    ``git+https://github.com/org/repo?branch=master#abc`` ->
    ``https://github.com/org/repo``. Registry and path sources yield None.
    """
    if not source.startswith("git+"):
        return None
    url = source[len("git+"):]
    url = url.split("#", 1)[0]
    return url.split("?", 1)[0]


def parse_packages(lockfile_text: str) -> List[dict]:
    """The ``[[package]]`` entries of a Cargo.lock."""
    try:
        data = tomllib.loads(lockfile_text)
    except tomllib.TOMLDecodeError as e:
        raise LockfileError(f"Failed to parse lockfile: {e}") from e
    return list(data.get("package") or [])


def packages_from_source(packages: Iterable[dict], url: str) -> List[str]:
    """Names of packages whose git source points at ``url``, lock order kept."""
    names: List[str] = []
    for pkg in packages:
        src = pkg.get("source")
        if src and source_url(src) == url and pkg.get("name") not in names:
            names.append(pkg["name"])
    return names


def references_source(lockfile_text: str, url: str) -> bool:
    return bool(packages_from_source(parse_packages(lockfile_text), url))


def update_packages(
    repo_dir: Path,
    source_urls: Iterable[str],
    log: logging.Logger | None = None,
) -> List[str]:
    """Run ``cargo update`` for the packages pinned to the given git sources.

    One package per source is enough: cargo moves the whole git source to
    its latest revision.

    Returns:
        The package names passed to cargo; empty if nothing matched.
    """
    lockfile = Path(repo_dir) / LOCKFILE_NAME
    if not lockfile.is_file():
        if log:
            log.info("No %s in %s; skipping lockfile update", LOCKFILE_NAME, repo_dir)
        return []
    packages = parse_packages(lockfile.read_text(encoding="utf-8"))
    selected: List[str] = []
    for url in source_urls:
        names = packages_from_source(packages, url)
        if names and names[0] not in selected:
            selected.append(names[0])
        elif not names and log:
            log.info("%s does not reference %s", LOCKFILE_NAME, url)
    if not selected:
        return []
    args = ["cargo", "update", "-v"]
    for name in selected:
        args += ["-p", name]
    _run_cmd(args, cwd=Path(repo_dir), log=log)
    if log:
        log.info("Updated %s for %s", LOCKFILE_NAME, ", ".join(selected))
    return selected

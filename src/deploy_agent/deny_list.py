"""Decide which files of a deploy folder are safe to publish.

Rules are matched per path segment against a fixed deny-list. Each pattern
string has one of four shapes:

- ``name/``   directory: any ancestor segment equal to ``name`` excludes the file
- ``*.ext``   extension: the basename ends with ``.ext``
- ``.env``    prefix family: the basename is ``.env`` or starts with ``.env.``
- otherwise   exact basename

Matching is case-sensitive. Excluded directories are pruned during the walk,
so nothing beneath them is ever read.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Sequence

import structlog

from .errors import FilterIOError

_logger = structlog.get_logger(__name__)

DENIED_PATTERNS: tuple[str, ...] = (
    ".env",
    ".git/",
    "node_modules/",
    ".claude/",
    ".deploy.json",
    ".DS_Store",
    ".npmrc",
    "*.pem",
    "*.key",
    "*.pfx",
    "*.p12",
    "id_rsa",
    "id_ed25519",
    "id_ecdsa",
)

# Patterns whose basename match also covers dotted variants (.env.local, ...)
_PREFIX_FAMILIES: frozenset[str] = frozenset({".env"})

RuleKind = Literal["exact", "prefix", "extension", "directory"]


@dataclass(slots=True, frozen=True)
class DenyRule:
    kind: RuleKind
    value: str
    pattern: str

    def matches(self, segments: Sequence[str]) -> bool:
        basename = segments[-1]
        if self.kind == "directory":
            return self.value in segments[:-1]
        if self.kind == "extension":
            return basename.endswith(self.value)
        if self.kind == "prefix":
            return basename == self.value or basename.startswith(self.value + ".")
        return basename == self.value


def parse_pattern(pattern: str) -> DenyRule:
    if pattern.endswith("/"):
        return DenyRule("directory", pattern[:-1], pattern)
    if pattern.startswith("*."):
        return DenyRule("extension", pattern[1:], pattern)
    if pattern in _PREFIX_FAMILIES:
        return DenyRule("prefix", pattern, pattern)
    return DenyRule("exact", pattern, pattern)


DENY_RULES: tuple[DenyRule, ...] = tuple(parse_pattern(p) for p in DENIED_PATTERNS)
_DENIED_DIRECTORIES: frozenset[str] = frozenset(r.value for r in DENY_RULES if r.kind == "directory")


def _segments(path: str) -> list[str]:
    return path.replace("\\", "/").split("/")


def matching_rule(path: str) -> DenyRule | None:
    """Return the first deny rule that excludes *path*, if any."""
    segments = _segments(path)
    for rule in DENY_RULES:
        if rule.matches(segments):
            return rule
    return None


def should_exclude(path: str) -> bool:
    """Return True when *path* (relative, either separator) must not be deployed."""
    return matching_rule(path) is not None


def collect_files(root: str | os.PathLike[str]) -> list[str]:
    """Walk *root* and return the deployable files as sorted ``/``-separated relative paths.

    Symlinks are neither followed nor included. Raises ``FilterIOError`` when
    the root (or a directory beneath it) cannot be listed.
    """
    root_path = Path(root)
    results: list[str] = []
    pruned = 0

    def _walk(directory: Path, prefix: str) -> None:
        nonlocal pruned
        try:
            with os.scandir(directory) as it:
                entries = list(it)
        except OSError as exc:
            raise FilterIOError(f"Cannot read deploy folder {directory}: {exc.strerror or exc}") from exc
        for entry in entries:
            rel_path = f"{prefix}{entry.name}"
            if entry.is_dir(follow_symlinks=False):
                if entry.name in _DENIED_DIRECTORIES:
                    pruned += 1
                    continue
                _walk(Path(entry.path), rel_path + "/")
            elif entry.is_file(follow_symlinks=False):
                if should_exclude(rel_path):
                    pruned += 1
                    continue
                results.append(rel_path)

    _walk(root_path, "")
    results.sort()
    _logger.debug("deny_list.collected", root=str(root_path), included=len(results), excluded=pruned)
    return results


__all__ = [
    "DENIED_PATTERNS",
    "DENY_RULES",
    "DenyRule",
    "collect_files",
    "matching_rule",
    "parse_pattern",
    "should_exclude",
]

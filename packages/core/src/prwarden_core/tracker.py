"""Incremental review tracking.

Each run diffs from an *origin* commit. The origin is either the pull
request's base (nothing usable was reviewed before) or the newest commit a
previous run recorded as reviewed. Two comparisons are then intersected:

- origin → head tells us *which* files changed since the last pass;
- base → head gives the full-PR hunks for those files, so a file edited in
  several pushes is still reviewed with all of its PR context.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Union


@dataclass(frozen=True)
class AtBase:
    """No prior review is usable; diff from the pull request's base commit."""

    sha: str


@dataclass(frozen=True)
class AtCommit:
    """A previous run covered everything up to ``sha``."""

    sha: str


ReviewOrigin = Union[AtBase, AtCommit]


def highest_reviewed_commit(commit_ids: Sequence[str], reviewed_ids: Sequence[str]) -> str | None:
    """Return the newest commit of the PR that a previous run recorded, if any.

    Reviewed ids that are no longer part of the PR (force push, rebase) are
    ignored.
    """
    reviewed = set(reviewed_ids)
    for sha in reversed(commit_ids):
        if sha in reviewed:
            return sha
    return None


def choose_origin(
    reviewed_ids: Sequence[str],
    commit_ids: Sequence[str],
    base_sha: str,
    head_sha: str,
) -> ReviewOrigin:
    """Decide where this run's incremental diff starts.

    Falls back to the base commit when nothing was reviewed, when the last
    reviewed commit is gone from the PR, or when it already equals head.
    """
    highest = highest_reviewed_commit(commit_ids, reviewed_ids)
    if not highest or highest == head_sha:
        return AtBase(base_sha)
    return AtCommit(highest)


def select_files(incremental_files, target_files) -> list:
    """Keep the target-diff entries whose filename also changed incrementally.

    Either argument may be None when the compare API returned no file list;
    the result is then empty. Target order is preserved.
    """
    if incremental_files is None or target_files is None:
        return []
    touched = {f.filename for f in incremental_files}
    return [f for f in target_files if f.filename in touched]

"""File selection: which changed paths are worth sending to the model."""

from __future__ import annotations

import fnmatch
from typing import Sequence

NON_CODE_EXTENSIONS = {
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".svg",
    ".ico",
    ".webp",
    ".pdf",
    ".woff",
    ".woff2",
    ".ttf",
    ".mp4",
    ".zip",
    ".tar",
    ".gz",
    ".lock",  # e.g. package-lock.json, Pipfile.lock
}


def is_code_file(file_name: str) -> bool:
    return not any(file_name.lower().endswith(ext) for ext in NON_CODE_EXTENSIONS)


def _matches(filename: str, pattern: str) -> bool:
    if fnmatch.fnmatch(filename, pattern):
        return True
    # "*.lock" matches "path/to/yarn.lock"
    if "/" not in pattern and fnmatch.fnmatch(filename.rsplit("/", 1)[-1], pattern):
        return True
    # "migrations" or "migrations/" matches "app/migrations/0001.py"
    prefix = pattern.rstrip("/") + "/"
    return filename.startswith(prefix) or ("/" + prefix) in filename


class PathFilter:
    """Exclude rules with optional ``!pattern`` re-inclusions.

    A path is rejected when it matches any plain pattern, unless it also
    matches a ``!`` pattern. With only ``!`` patterns configured, the filter
    becomes an allow-list: paths matching none of them are rejected.
    """

    def __init__(self, patterns: Sequence[str] = ()):
        self.excludes = [p for p in patterns if p and not p.startswith("!")]
        self.includes = [p[1:] for p in patterns if p.startswith("!") and len(p) > 1]

    def check(self, filename: str) -> bool:
        included = any(_matches(filename, p) for p in self.includes)
        if self.includes and not self.excludes:
            return included
        if included:
            return True
        return not any(_matches(filename, p) for p in self.excludes)


def is_excluded(filename: str, patterns: Sequence[str]) -> bool:
    return not PathFilter(patterns).check(filename)


def should_review_path(filename: str, patterns: Sequence[str]) -> bool:
    return is_code_file(filename) and not is_excluded(filename, patterns)

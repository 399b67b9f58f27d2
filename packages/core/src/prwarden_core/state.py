"""Review state persisted inside the pull request's summary comment.

There is no external store: the state lives in marked blocks of the single
comment tagged with :data:`SUMMARIZE_TAG` and is reloaded on every run.

Layout of the summary comment::

    <final summary text>
    RAW_SUMMARY_START_TAG  ... RAW_SUMMARY_END_TAG
    SHORT_SUMMARY_START_TAG ... SHORT_SUMMARY_END_TAG
    <status message>
    COMMIT_IDS_START_TAG
    <!-- sha1 -->
    <!-- sha2 -->
    COMMIT_IDS_END_TAG
    SUMMARIZE_TAG
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace

from prwarden_core.markers import (
    COMMIT_IDS_END_TAG,
    COMMIT_IDS_START_TAG,
    DESCRIPTION_END_TAG,
    DESCRIPTION_START_TAG,
    IN_PROGRESS_END_TAG,
    IN_PROGRESS_START_TAG,
    RAW_SUMMARY_END_TAG,
    RAW_SUMMARY_START_TAG,
    SHORT_SUMMARY_END_TAG,
    SHORT_SUMMARY_START_TAG,
)

_COMMIT_ID_RE = re.compile(r"<!--\s*([0-9a-f]{7,40})\s*-->")


def _between(body: str, start_tag: str, end_tag: str) -> str:
    start = body.find(start_tag)
    if start == -1:
        return ""
    end = body.find(end_tag, start)
    if end == -1:
        return ""
    return body[start + len(start_tag) : end].strip()


def _strip_block(body: str, start_tag: str, end_tag: str) -> str:
    start = body.find(start_tag)
    if start == -1:
        return body
    end = body.find(end_tag, start)
    if end == -1:
        return body
    return body[:start] + body[end + len(end_tag) :]


@dataclass(frozen=True)
class ReviewState:
    raw_summary: str = ""
    short_summary: str = ""
    reviewed_commit_ids: tuple[str, ...] = ()

    @classmethod
    def from_comment(cls, body: str | None) -> ReviewState:
        if not body:
            return cls()
        ids_block = _between(body, COMMIT_IDS_START_TAG, COMMIT_IDS_END_TAG)
        return cls(
            raw_summary=_between(body, RAW_SUMMARY_START_TAG, RAW_SUMMARY_END_TAG),
            short_summary=_between(body, SHORT_SUMMARY_START_TAG, SHORT_SUMMARY_END_TAG),
            reviewed_commit_ids=tuple(_COMMIT_ID_RE.findall(ids_block)),
        )

    def with_commit(self, sha: str) -> ReviewState:
        """Return a copy with ``sha`` appended to the reviewed ids (no duplicates)."""
        if sha in self.reviewed_commit_ids:
            return self
        return replace(self, reviewed_commit_ids=(*self.reviewed_commit_ids, sha))

    def render_summary_blocks(self) -> str:
        return (
            f"{RAW_SUMMARY_START_TAG}\n{self.raw_summary}\n{RAW_SUMMARY_END_TAG}\n"
            f"{SHORT_SUMMARY_START_TAG}\n{self.short_summary}\n{SHORT_SUMMARY_END_TAG}\n"
        )

    def render_commit_ids(self) -> str:
        ids = "\n".join(f"<!-- {sha} -->" for sha in self.reviewed_commit_ids)
        return f"{COMMIT_IDS_START_TAG}\n{ids}\n{COMMIT_IDS_END_TAG}"


def add_in_progress_status(body: str, status_msg: str) -> str:
    """Embed an "in progress" notice at the top of an existing summary body."""
    if IN_PROGRESS_START_TAG in body:
        return body
    return (
        f"{IN_PROGRESS_START_TAG}\n\n"
        "Currently reviewing new changes in this PR...\n\n"
        f"{status_msg}\n\n"
        "---\n"
        f"{IN_PROGRESS_END_TAG}\n\n"
        f"{body}"
    )


def remove_in_progress_status(body: str) -> str:
    return _strip_block(body, IN_PROGRESS_START_TAG, IN_PROGRESS_END_TAG).lstrip("\n")


def get_description(body: str | None) -> str:
    """Return the PR description without the release notes prwarden wrote into it."""
    if not body:
        return ""
    return _strip_block(body, DESCRIPTION_START_TAG, DESCRIPTION_END_TAG).strip()


def build_description(body: str | None, release_notes: str) -> str:
    """Replace (or append) the generated release-notes block in a description."""
    description = get_description(body)
    block = f"{DESCRIPTION_START_TAG}\n{release_notes}\n{DESCRIPTION_END_TAG}"
    return f"{description}\n\n{block}" if description else block

"""Reconciliation of review-comment threads left by earlier runs.

Every review comment on the pull request is classified exactly once, here,
into a :class:`ThreadKind`. Downstream code switches on the kind and never
re-scans comment bodies for tags.

Two idempotent actions run at the start of each review:

1. stale deletion: a bot top-level comment nobody replied to is deleted, the
   bot can regenerate it if it still applies;
2. auto-resolution: every other bot thread that is not pinned as required
   gets a single reply carrying :data:`RESOLVED_MARKER`. The marker already
   being present in the chain is what makes the action safe to repeat.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, Sequence

from prwarden_core.markers import (
    AUTO_TEST_TAG,
    COMMENT_REPLY_TAG,
    COMMENT_TAG,
    REQUIRED_PREFIX,
    RESOLVED_MARKER,
)
from prwarden_core.patch import Hunk, LineRange

logger = logging.getLogger(__name__)


class ThreadKind(Enum):
    BOT_TOP_LEVEL = "bot-top-level"
    BOT_REPLY = "bot-reply"
    REQUIRED = "required"
    PLAIN = "plain"


def classify(body: str | None) -> ThreadKind:
    text = body or ""
    if text.lstrip().startswith(REQUIRED_PREFIX):
        return ThreadKind.REQUIRED
    if AUTO_TEST_TAG in text:
        return ThreadKind.PLAIN
    if COMMENT_REPLY_TAG in text:
        return ThreadKind.BOT_REPLY
    if COMMENT_TAG in text:
        return ThreadKind.BOT_TOP_LEVEL
    return ThreadKind.PLAIN


@dataclass(frozen=True)
class ThreadComment:
    """A single review comment as returned by the hosting platform."""

    id: int
    path: str
    body: str
    line: int | None = None
    start_line: int | None = None
    original_line: int | None = None
    in_reply_to_id: int | None = None
    user: str = ""
    kind: ThreadKind = ThreadKind.PLAIN

    @classmethod
    def from_github(cls, comment) -> ThreadComment:
        user = getattr(comment, "user", None)
        body = comment.body or ""
        return cls(
            id=comment.id,
            path=comment.path,
            body=body,
            line=comment.line,
            start_line=getattr(comment, "start_line", None),
            # line is None once the commented code changed (GitHub marks the
            # comment outdated); original_line keeps where it was made.
            original_line=getattr(comment, "original_line", None),
            in_reply_to_id=getattr(comment, "in_reply_to_id", None),
            user=getattr(user, "login", "") or "",
            kind=classify(body),
        )

    @property
    def outdated(self) -> bool:
        return self.line is None

    @property
    def line_range(self) -> LineRange:
        end = self.line if self.line is not None else (self.original_line or 0)
        start = self.start_line if self.start_line is not None else end
        return LineRange(min(start, end), end)


@dataclass(frozen=True)
class CommentThread:
    root: ThreadComment
    replies: tuple[ThreadComment, ...] = ()

    @property
    def comments(self) -> tuple[ThreadComment, ...]:
        return (self.root, *self.replies)

    @property
    def kind(self) -> ThreadKind:
        return self.root.kind

    @property
    def path(self) -> str:
        return self.root.path

    @property
    def line_range(self) -> LineRange:
        return self.root.line_range

    @property
    def required(self) -> bool:
        return any(c.kind is ThreadKind.REQUIRED for c in self.comments)

    @property
    def bot_tagged(self) -> bool:
        return any(c.kind in (ThreadKind.BOT_TOP_LEVEL, ThreadKind.BOT_REPLY) for c in self.comments)

    @property
    def resolved(self) -> bool:
        return any(RESOLVED_MARKER in c.body for c in self.comments)

    @property
    def stale(self) -> bool:
        return self.kind is ThreadKind.BOT_TOP_LEVEL and not self.replies

    @property
    def resolvable(self) -> bool:
        return self.bot_tagged and not self.required and not self.resolved

    def chain_text(self) -> str:
        parts = [f"Comment ID: {self.root.id}"]
        for c in self.comments:
            author = c.user or "unknown"
            parts.append(f"{author}: {c.body}")
        return "\n---\n".join(parts)


def build_threads(comments: Sequence[ThreadComment]) -> list[CommentThread]:
    """Group flat review comments into threads keyed by their root comment.

    Replies whose root is not in ``comments`` are dropped; GitHub always
    returns roots alongside their replies for a single pull request.
    """
    roots: dict[int, ThreadComment] = {}
    replies: dict[int, list[ThreadComment]] = {}
    for c in comments:
        if c.in_reply_to_id is None:
            roots[c.id] = c
        else:
            replies.setdefault(c.in_reply_to_id, []).append(c)
    return [
        CommentThread(root=root, replies=tuple(sorted(replies.get(root_id, []), key=lambda r: r.id)))
        for root_id, root in roots.items()
    ]


def threads_in_range(threads: Sequence[CommentThread], path: str, line_range: LineRange) -> list[CommentThread]:
    return [t for t in threads if t.path == path and t.line_range.overlaps(line_range)]


def describe_existing(threads: Sequence[CommentThread]) -> str:
    """Summarise prior comments so the model can avoid repeating them."""
    if not threads:
        return ""
    entries = []
    for t in threads:
        for c in t.comments:
            line = c.start_line or c.line or c.original_line
            body = c.body.replace("\n", "\\n").replace("\t", "\\t")
            entries.append(f"File: {c.path}\nLines: {line}\nComment: {body}")
    joined = "\n\n".join(entries)
    return (
        f"\n\nPreviously reviewed comments:\n{joined}\n\n"
        "Please avoid making duplicate comments for the same issues that were already reviewed. "
        "Instead, focus on changed code only."
    )


# ---------------------------------------------------------------------------
# Resolution policy for threads overlapping a newly reviewed hunk
# ---------------------------------------------------------------------------


class ResolvePolicy(Protocol):
    def should_resolve(self, path: str, line_range: LineRange, hunk: Hunk, thread: CommentThread) -> bool:
        """Return True when ``thread`` no longer applies to the code in ``hunk``.

        Called only for resolvable threads on ``path`` whose range overlaps
        ``line_range`` (the hunk's new-file range). Must not perform I/O.
        """


class TouchedLinesPolicy:
    """Resolve a thread when the code it points at was rewritten.

    A thread is resolved if GitHub reports it outdated (its current line is
    gone because the commented lines changed), or if any line added by the
    hunk falls inside the thread's range. A thread whose code merely shifted
    keeps a current line and sees no added line inside its range, so it stays
    open.
    """

    def should_resolve(self, path: str, line_range: LineRange, hunk: Hunk, thread: CommentThread) -> bool:
        if thread.root.outdated:
            return True
        return any(thread.line_range.contains(line) for line in hunk.added_lines)


class NeverResolvePolicy:
    def should_resolve(self, path: str, line_range: LineRange, hunk: Hunk, thread: CommentThread) -> bool:
        return False


_POLICIES = {"touched": TouchedLinesPolicy, "never": NeverResolvePolicy}


def get_resolve_policy(name: str) -> ResolvePolicy:
    try:
        return _POLICIES[name]()
    except KeyError:
        raise ValueError(f"Unknown resolve policy: {name!r}. Choose one of {sorted(_POLICIES)}.")


# ---------------------------------------------------------------------------
# Decide, then act
# ---------------------------------------------------------------------------


@dataclass
class ReconcilePlan:
    delete: list[CommentThread] = field(default_factory=list)
    resolve: list[CommentThread] = field(default_factory=list)
    keep: list[CommentThread] = field(default_factory=list)


@dataclass
class ReconcileResult:
    deleted: list[int] = field(default_factory=list)
    resolved: list[int] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)


def plan_reconciliation(threads: Sequence[CommentThread], resolve_all: bool = True) -> ReconcilePlan:
    """Pure decision step: which threads to delete, resolve, or leave alone."""
    plan = ReconcilePlan()
    for thread in threads:
        if thread.required:
            plan.keep.append(thread)
        elif thread.stale:
            plan.delete.append(thread)
        elif resolve_all and thread.resolvable:
            plan.resolve.append(thread)
        else:
            plan.keep.append(thread)
    return plan


class Reconciler:
    """Applies a :class:`ReconcilePlan` through the hosting client.

    Per-thread actions run concurrently; the client throttles them. A thread
    is resolved at most once per Reconciler, and never when its chain on the
    platform already carries the resolution marker.
    """

    def __init__(self, client, pr_number: int, policy: ResolvePolicy | None = None):
        self._client = client
        self._pr_number = pr_number
        self._policy = policy or TouchedLinesPolicy()
        self._claimed: set[int] = set()

    async def apply(self, plan: ReconcilePlan) -> ReconcileResult:
        result = ReconcileResult()
        await asyncio.gather(
            *(self._delete(t, result) for t in plan.delete),
            *(self._resolve_into(t, result) for t in plan.resolve),
        )
        logger.info(
            "Reconciled threads: %d deleted, %d resolved, %d failed",
            len(result.deleted),
            len(result.resolved),
            len(result.failures),
        )
        return result

    async def resolve(self, thread: CommentThread) -> bool:
        """Post the resolution reply on ``thread`` unless it already has one."""
        root_id = thread.root.id
        if root_id in self._claimed:
            return False
        self._claimed.add(root_id)
        try:
            chain = await self._client.get_comment_chain(self._pr_number, root_id)
            if any(RESOLVED_MARKER in c.body for c in chain):
                logger.debug("Thread %d already resolved", root_id)
                return False
            await self._client.reply_to_review_comment(
                self._pr_number, root_id, f"{RESOLVED_MARKER}\n\n{COMMENT_REPLY_TAG}"
            )
        except Exception:
            self._claimed.discard(root_id)
            raise
        logger.info("Resolved thread %d on %s", root_id, thread.path)
        return True

    async def resolve_overlapping(self, threads: Sequence[CommentThread], path: str, hunk: Hunk) -> list[int]:
        """Resolve threads over ``hunk`` that the policy says no longer apply."""
        resolved = []
        for thread in threads_in_range(threads, path, hunk.new):
            if not thread.resolvable:
                continue
            if not self._policy.should_resolve(path, hunk.new, hunk, thread):
                continue
            if await self.resolve(thread):
                resolved.append(thread.root.id)
        return resolved

    async def _delete(self, thread: CommentThread, result: ReconcileResult) -> None:
        try:
            await self._client.delete_review_comment(self._pr_number, thread.root.id)
        except Exception as e:
            logger.warning("Failed to delete comment %d: %s", thread.root.id, e)
            result.failures.append(f"{thread.path} comment {thread.root.id} (delete failed: {e})")
            return
        logger.info("Deleted unanswered bot comment %d on %s", thread.root.id, thread.path)
        result.deleted.append(thread.root.id)

    async def _resolve_into(self, thread: CommentThread, result: ReconcileResult) -> None:
        try:
            if await self.resolve(thread):
                result.resolved.append(thread.root.id)
        except Exception as e:
            logger.warning("Failed to resolve comment %d: %s", thread.root.id, e)
            result.failures.append(f"{thread.path} comment {thread.root.id} (resolve failed: {e})")

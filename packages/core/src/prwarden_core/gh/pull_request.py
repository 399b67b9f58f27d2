"""GitHub access for the review pipeline.

PyGithub is synchronous. :class:`GitHubClient` runs each call in a worker
thread via ``asyncio.to_thread`` and throttles them with one semaphore, so
the orchestrator can fan out per-file and per-thread work without ever
exceeding the configured number of simultaneous GitHub requests.

PyGithub's paginated lists are lazy; every method materialises them inside
the worker thread so no network access leaks back onto the event loop.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from github import Auth, Github, GithubException

from prwarden_core.threads import ThreadComment

logger = logging.getLogger(__name__)


def get_repo(repo_name: str, token: str):
    return Github(auth=Auth.Token(token)).get_repo(repo_name)


def get_pull(repo, pr_number: int):
    return repo.get_pull(pr_number)


@dataclass(frozen=True)
class ChangedFile:
    filename: str
    status: str = "modified"
    patch: str | None = None


@dataclass(frozen=True)
class Comparison:
    """Result of comparing two commits.

    ``files`` is None when GitHub returned no file list at all, which is
    different from an empty list of changes.
    """

    files: list[ChangedFile] | None = None
    commits: list[str] = field(default_factory=list)


class GitHubClient:
    """Async facade over one repository, bounded to ``concurrency`` calls."""

    def __init__(self, repo, concurrency: int = 6):
        self._repo = repo
        self._limit = asyncio.Semaphore(max(1, concurrency))
        self._pulls: dict[int, object] = {}

    async def _run(self, fn, *args):
        async with self._limit:
            return await asyncio.to_thread(fn, *args)

    def _pull(self, pr_number: int):
        pr = self._pulls.get(pr_number)
        if pr is None:
            pr = self._pulls[pr_number] = self._repo.get_pull(pr_number)
        return pr

    # ------------------------------------------------------------------ #
    # Review comments                                                      #
    # ------------------------------------------------------------------ #

    async def list_review_comments(self, pr_number: int) -> list[ThreadComment]:
        def _list():
            return [ThreadComment.from_github(c) for c in self._pull(pr_number).get_review_comments()]

        return await self._run(_list)

    async def get_comment_chain(self, pr_number: int, root_id: int) -> list[ThreadComment]:
        """Return a thread's root comment followed by its replies, fetched fresh."""
        comments = await self.list_review_comments(pr_number)
        return [c for c in comments if c.id == root_id or c.in_reply_to_id == root_id]

    async def delete_review_comment(self, pr_number: int, comment_id: int) -> None:
        def _delete():
            self._pull(pr_number).get_review_comment(comment_id).delete()

        await self._run(_delete)

    async def reply_to_review_comment(self, pr_number: int, comment_id: int, body: str) -> None:
        def _reply():
            self._pull(pr_number).create_review_comment_reply(comment_id, body)

        await self._run(_reply)

    async def submit_review(self, pr_number: int, commit_sha: str, body: str, comments: list[dict]) -> None:
        """Post one review holding every inline comment of this run.

        Each comment dict carries ``path``, ``body``, ``line`` and, for a
        multi-line range, ``start_line``; all lines are new-file lines.
        """

        def _submit():
            api_comments = []
            for c in comments:
                entry = {"path": c["path"], "body": c["body"], "line": c["line"], "side": "RIGHT"}
                if c.get("start_line") and c["start_line"] < c["line"]:
                    entry["start_line"] = c["start_line"]
                    entry["start_side"] = "RIGHT"
                api_comments.append(entry)
            self._pull(pr_number).create_review(
                commit=self._repo.get_commit(commit_sha),
                body=body,
                event="COMMENT",
                comments=api_comments,
            )

        await self._run(_submit)

    # ------------------------------------------------------------------ #
    # Issue comments (summary + persisted state)                           #
    # ------------------------------------------------------------------ #

    async def find_comment_with_tag(self, pr_number: int, tag: str):
        """Return the first issue comment whose body contains ``tag``, or None."""

        def _find():
            for comment in self._pull(pr_number).get_issue_comments():
                if comment.body and tag in comment.body:
                    return comment
            return None

        return await self._run(_find)

    async def upsert_comment(self, pr_number: int, body: str, tag: str) -> None:
        """Replace the body of the comment carrying ``tag``, creating it if missing."""
        if tag not in body:
            body = f"{body}\n\n{tag}"

        def _upsert():
            pr = self._pull(pr_number)
            for comment in pr.get_issue_comments():
                if comment.body and tag in comment.body:
                    comment.edit(body)
                    return
            pr.create_issue_comment(body)

        await self._run(_upsert)

    # ------------------------------------------------------------------ #
    # Commits, content, description                                        #
    # ------------------------------------------------------------------ #

    async def list_commit_ids(self, pr_number: int) -> list[str]:
        def _list():
            return [c.sha for c in self._pull(pr_number).get_commits()]

        return await self._run(_list)

    async def compare(self, base_sha: str, head_sha: str) -> Comparison:
        def _compare():
            comparison = self._repo.compare(base_sha, head_sha)
            files = comparison.files
            return Comparison(
                files=None
                if files is None
                else [ChangedFile(filename=f.filename, status=f.status, patch=f.patch) for f in files],
                commits=[c.sha for c in comparison.commits],
            )

        return await self._run(_compare)

    async def get_file_content(self, path: str, ref: str) -> str:
        """Return a file's text at ``ref``; empty when it does not exist there (new file)."""

        def _get():
            try:
                contents = self._repo.get_contents(path, ref=ref)
            except GithubException as e:
                logger.warning("Failed to get contents of %s: %s. This is OK if it's a new file.", path, e)
                return ""
            if isinstance(contents, list) or contents.type != "file":
                return ""
            # Files over 1 MB come back with encoding "none" and no inline content.
            if contents.encoding != "base64":
                logger.info("Skipping base content of %s: encoding %r", path, contents.encoding)
                return ""
            return contents.decoded_content.decode("utf-8", errors="replace")

        return await self._run(_get)

    async def update_description(self, pr_number: int, body: str) -> None:
        def _edit():
            self._pull(pr_number).edit(body=body)

        await self._run(_edit)

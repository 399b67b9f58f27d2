"""In-memory stand-ins for the GitHub client and chat models."""

import json
import types

from prwarden_core.event import PullRequestContext
from prwarden_core.gh.pull_request import ChangedFile, Comparison
from prwarden_core.threads import ThreadComment, classify

BASE = "b" * 40
SIMPLE_PATCH = "@@ -1,2 +1,3 @@\n line1\n+new line\n line2\n"


class FakeGitHub:
    """Mimics GitHubClient against a single pull request held in memory."""

    def __init__(self, commits, comparisons, contents=None, content_errors=None):
        self.commits = list(commits)
        self.comparisons = dict(comparisons)
        self.contents = contents or {}
        self.content_errors = content_errors or {}
        self.review_comments: list[ThreadComment] = []
        self.issue_comments: list[types.SimpleNamespace] = []
        self.upserts: list[str] = []
        self.reviews: list[dict] = []
        self.deleted: list[int] = []
        self.replies: list[tuple[int, str]] = []
        self.description = None
        self.fail_submit = False
        self._next_id = 100

    def _id(self):
        self._next_id += 1
        return self._next_id

    async def list_review_comments(self, pr_number):
        return list(self.review_comments)

    async def get_comment_chain(self, pr_number, root_id):
        return [c for c in self.review_comments if c.id == root_id or c.in_reply_to_id == root_id]

    async def delete_review_comment(self, pr_number, comment_id):
        self.deleted.append(comment_id)
        self.review_comments = [c for c in self.review_comments if c.id != comment_id]

    async def reply_to_review_comment(self, pr_number, comment_id, body):
        self.replies.append((comment_id, body))
        root = next(c for c in self.review_comments if c.id == comment_id)
        self.review_comments.append(
            ThreadComment(
                id=self._id(), path=root.path, body=body, line=root.line, in_reply_to_id=comment_id,
                user="prwarden", kind=classify(body),
            )
        )

    async def submit_review(self, pr_number, commit_sha, body, comments):
        if self.fail_submit:
            raise RuntimeError("422 Unprocessable Entity")
        self.reviews.append({"commit": commit_sha, "body": body, "comments": comments})
        for c in comments:
            self.review_comments.append(
                ThreadComment(
                    id=self._id(), path=c["path"], body=c["body"], line=c["line"],
                    start_line=c["start_line"], user="prwarden", kind=classify(c["body"]),
                )
            )

    async def find_comment_with_tag(self, pr_number, tag):
        return next((c for c in self.issue_comments if tag in c.body), None)

    async def upsert_comment(self, pr_number, body, tag):
        if tag not in body:
            body = f"{body}\n\n{tag}"
        self.upserts.append(body)
        existing = await self.find_comment_with_tag(pr_number, tag)
        if existing is not None:
            existing.body = body
        else:
            self.issue_comments.append(types.SimpleNamespace(body=body))

    async def list_commit_ids(self, pr_number):
        return list(self.commits)

    async def compare(self, base_sha, head_sha):
        return self.comparisons.get((base_sha, head_sha), Comparison(files=[], commits=[]))

    async def get_file_content(self, path, ref):
        if path in self.content_errors:
            raise self.content_errors[path]
        return self.contents.get(path, "")

    async def update_description(self, pr_number, body):
        self.description = body


class FakeModel:
    """Answers each prompt kind with canned text; review answers are per file."""

    def __init__(self, reviews=None, triage=None, fail_summary=()):
        self.reviews = reviews or {}
        self.triage = triage or {}
        self.fail_summary = set(fail_summary)
        self.prompts: list[str] = []

    async def chat(self, prompt, prefix=""):
        self.prompts.append(prompt)
        if prefix == "{":
            for filename, response in self.reviews.items():
                if f"## Changes made to `{filename}`" in prompt:
                    return response
            return json.dumps({"reviews": [], "lgtm": True})
        if "Succinctly summarize the changes to" in prompt:
            filename = prompt.split("`", 2)[1]
            if filename in self.fail_summary:
                raise RuntimeError("model overloaded")
            return f"Changed {filename}.\n[TRIAGE]: {self.triage.get(filename, 'NEEDS_REVIEW')}"
        if "<changeSet>" in prompt:
            return prompt.split("<changeSet>\n", 1)[1].split("</changeSet>", 1)[0].strip()
        if "comprehensive summary" in prompt:
            return "Final summary."
        if "release notes" in prompt:
            return "- notes"
        if "concise summary" in prompt:
            return "Short summary."
        return ""


def changed(filename, patch=SIMPLE_PATCH):
    return ChangedFile(filename=filename, status="modified", patch=patch)


def make_pr(head, **fields):
    pull_request = {
        "number": 7,
        "title": "Add cache",
        "body": "Adds a cache layer.",
        "draft": False,
        "base": {"sha": BASE},
        "head": {"sha": head},
        **fields,
    }
    return PullRequestContext(repo="o/r", event_name="pull_request", payload={"pull_request": pull_request})


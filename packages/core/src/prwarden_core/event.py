"""Pull-request context and the preconditions checked before any remote call."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from prwarden_core.markers import IGNORE_KEYWORD
from prwarden_core.state import get_description

logger = logging.getLogger(__name__)

SUPPORTED_EVENTS = ("pull_request", "pull_request_target")


class PreconditionAbort(Exception):
    """The run must stop before doing anything. Not a failure."""


@dataclass(frozen=True)
class PullRequestContext:
    repo: str
    event_name: str
    payload: dict

    @property
    def pull_request(self) -> dict | None:
        return self.payload.get("pull_request")

    @property
    def number(self) -> int:
        return self.pull_request["number"]

    @property
    def title(self) -> str:
        return self.pull_request.get("title") or ""

    @property
    def body(self) -> str:
        return self.pull_request.get("body") or ""

    @property
    def description(self) -> str:
        return get_description(self.body)

    @property
    def base_sha(self) -> str:
        return self.pull_request["base"]["sha"]

    @property
    def head_sha(self) -> str:
        return self.pull_request["head"]["sha"]

    @classmethod
    def from_event_file(cls, repo: str, event_name: str, event_path: str) -> PullRequestContext:
        """Build the context from a GitHub Actions event payload file."""
        with open(Path(event_path), encoding="utf-8") as f:
            payload = json.load(f)
        return cls(repo=repo, event_name=event_name, payload=payload)

    @classmethod
    def from_pull(cls, repo: str, pr) -> PullRequestContext:
        """Build the context for a manual run from a PyGithub PullRequest."""
        payload = {
            "pull_request": {
                "number": pr.number,
                "title": pr.title,
                "body": pr.body,
                "draft": pr.draft,
                "base": {"sha": pr.base.sha},
                "head": {"sha": pr.head.sha},
            }
        }
        return cls(repo=repo, event_name="pull_request", payload=payload)


def check_preconditions(ctx: PullRequestContext, review_drafts: bool = False) -> None:
    """Raise PreconditionAbort when this run should not review anything."""
    if ctx.event_name not in SUPPORTED_EVENTS:
        raise PreconditionAbort(
            f"Skipped: current event is {ctx.event_name}, only pull_request events are supported"
        )
    if ctx.pull_request is None:
        raise PreconditionAbort("Skipped: event payload has no pull_request")
    if ctx.pull_request.get("draft") and not review_drafts:
        raise PreconditionAbort("Skipped: draft PR. Set review_draft_prs: true in .prwarden.yml to review drafts.")
    if IGNORE_KEYWORD in ctx.description:
        raise PreconditionAbort("Skipped: description contains the ignore keyword")

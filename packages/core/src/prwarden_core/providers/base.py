"""Base chat model implementing the Template Method pattern.

All providers share the same call algorithm:
    chat() → worker thread → _call_with_retry() → _call_api()   ← only this differs per provider

Subclasses implement two things only:
  - __init__: validate and store the SDK client
  - _call_api: make one raw API call and return the text response

Parsing of the review response also lives here, since the expected JSON
schema is the same whichever provider produced it.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

# Shared defaults — subclasses may override as class attributes if needed.
_MAX_RETRIES = 3
_MAX_TOKENS = 4096

_APPROVAL_PHRASES = ("LGTM", "looks good to me")


class BaseChatModel(ABC):
    MAX_RETRIES: int = _MAX_RETRIES
    MAX_TOKENS: int = _MAX_TOKENS
    TEMPERATURE: float = 0.2

    model: str = ""

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    async def chat(self, prompt: str, prefix: str = "") -> str:
        """Send one prompt and return the response text.

        ``prefix`` seeds the start of the response (e.g. ``"{"`` to force a
        JSON object); the returned text includes it. An empty string means
        no result was obtained — it is never an error.

        The provider SDKs are synchronous, so the call runs in a worker
        thread and the event loop stays free for sibling tasks.
        """
        raw = await asyncio.to_thread(self._call_with_retry, prompt, prefix)
        return raw or ""

    # ------------------------------------------------------------------ #
    # Abstract — implement in each provider                               #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _call_api(self, prompt: str, prefix: str) -> str:
        """Make a single API call and return the raw text response.

        It should raise on failure — _call_with_retry handles retries and logging.
        """

    # ------------------------------------------------------------------ #
    # Shared implementations                                               #
    # ------------------------------------------------------------------ #

    def _call_with_retry(self, prompt: str, prefix: str = "") -> str | None:
        """Retry _call_api up to MAX_RETRIES times with exponential backoff."""
        for attempt in range(self.MAX_RETRIES):
            try:
                return self._call_api(prompt, prefix)
            except Exception as e:
                if attempt == self.MAX_RETRIES - 1:
                    logger.error(
                        "%s API failed after %d attempts: %s",
                        self.__class__.__name__,
                        self.MAX_RETRIES,
                        e,
                    )
                    return None
                delay = 2**attempt
                logger.warning(
                    "%s API error (attempt %d/%d): %s. Retrying in %ds...",
                    self.__class__.__name__,
                    attempt + 1,
                    self.MAX_RETRIES,
                    e,
                    delay,
                )
                time.sleep(delay)


# ---------------------------------------------------------------------- #
# Review response parsing                                                  #
# ---------------------------------------------------------------------- #


class Verdict(Enum):
    LGTM = "lgtm"
    ACTIONABLE = "actionable"


@dataclass(frozen=True)
class ReviewComment:
    path: str
    start_line: int
    end_line: int
    comment: str
    verdict: Verdict = Verdict.ACTIONABLE

    @property
    def anchored(self) -> bool:
        return not (self.start_line == 0 and self.end_line == 0)


@dataclass
class ReviewResult:
    comments: list[ReviewComment] = field(default_factory=list)
    lgtm: bool = False


def is_approval(text: str) -> bool:
    lowered = text.lower()
    return any(phrase.lower() in lowered for phrase in _APPROVAL_PHRASES)


def strip_code_fences(raw: str) -> str:
    # Strip only the outer ```json ... ``` fence, NOT backticks inside
    # comment string values.
    cleaned = re.sub(r"^```(?:json)?\s*", "", raw.strip())
    return re.sub(r"\s*```$", "", cleaned.strip())


def _as_line(value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def parse_review(raw: str, path: str) -> ReviewResult:
    """Parse a ``{"reviews": [...], "lgtm": bool}`` response.

    Never raises: invalid or truncated JSON yields an empty result so the
    pipeline carries on with zero comments for the file. Entries without a
    comment are dropped; missing line bounds become 0 (unanchored).
    """
    try:
        data = json.loads(strip_code_fences(raw))
    except json.JSONDecodeError as e:
        logger.warning("Failed to parse review for %s as JSON (%s): %s", path, e, raw[:200])
        return ReviewResult()
    if not isinstance(data, dict):
        logger.warning("Review for %s is not a JSON object: %s", path, raw[:200])
        return ReviewResult()

    entries = data.get("reviews")
    if not isinstance(entries, list):
        entries = []

    comments = []
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("comment"):
            continue
        text = str(entry["comment"])
        comments.append(
            ReviewComment(
                path=path,
                start_line=_as_line(entry.get("line_start")),
                end_line=_as_line(entry.get("line_end")),
                comment=text,
                verdict=Verdict.LGTM if is_approval(text) else Verdict.ACTIONABLE,
            )
        )
    return ReviewResult(comments=comments, lgtm=bool(data.get("lgtm", False)))

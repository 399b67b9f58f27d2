"""Where the GitHub token comes from.

Sources are tried in order and the first non-empty token wins: the
``GITHUB_TOKEN`` and ``GH_TOKEN`` variables (Actions injects the former),
then the session stored by ``gh auth login``.
"""

from __future__ import annotations

import logging
import os
import subprocess
from typing import Callable

logger = logging.getLogger(__name__)

_TOKEN_ENV_VARS = ("GITHUB_TOKEN", "GH_TOKEN")
_GH_TIMEOUT = 5


def _from_environment() -> str | None:
    return next((os.environ[name] for name in _TOKEN_ENV_VARS if os.environ.get(name)), None)


def _from_gh_session() -> str | None:
    try:
        proc = subprocess.run(["gh", "auth", "token"], capture_output=True, text=True, timeout=_GH_TIMEOUT)
    except (FileNotFoundError, subprocess.TimeoutExpired) as e:
        logger.debug("gh CLI unavailable: %s", e)
        return None
    if proc.returncode != 0:
        logger.debug("gh CLI has no session (exit %d)", proc.returncode)
        return None
    return proc.stdout.strip() or None


_SOURCES: tuple[tuple[str, Callable[[], str | None]], ...] = (
    ("environment", _from_environment),
    ("gh CLI session", _from_gh_session),
)


def resolve_github_token() -> str | None:
    """Return the first token found, or None; the caller turns None into a UsageError."""
    for label, source in _SOURCES:
        token = source()
        if token:
            logger.debug("Using GitHub token from the %s.", label)
            return token
    return None

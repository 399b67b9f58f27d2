"""Prompt templates.

Templates use ``$name`` placeholders filled from :class:`Inputs` with
``string.Template.safe_substitute``, so literal ``{`` and ``}`` in the JSON
examples need no escaping and an unknown placeholder is left as-is.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from string import Template

DEFAULT_SYSTEM_MESSAGE = """You are a strict and precise senior code reviewer.
Focus on substantive issues: bugs, logic errors, security vulnerabilities,
performance problems, concurrency hazards and unhandled edge cases.
Do not comment on style preferences or restate what the code does.
Be concise and actionable."""


@dataclass(frozen=True)
class Inputs:
    system_message: str = ""
    title: str = ""
    description: str = ""
    raw_summary: str = ""
    short_summary: str = ""
    filename: str = ""
    file_diff: str = ""
    patches: str = ""

    def with_(self, **changes) -> Inputs:
        return replace(self, **changes)

    def render(self, template: str) -> str:
        return Template(template).safe_substitute(
            system_message=self.system_message,
            title=self.title,
            description=self.description,
            raw_summary=self.raw_summary,
            short_summary=self.short_summary,
            filename=self.filename,
            file_diff=self.file_diff,
            patches=self.patches,
        )


SUMMARIZE_FILE_DIFF = """
Succinctly summarize the changes to `$filename` in this pull request within 100 words.
If applicable, note alterations to the signatures of exported functions, global data
structures and variables, and any change that might affect the external interface or
behavior of the code.

<pull_request_title>
$title
</pull_request_title>

<pull_request_description>
$description
</pull_request_description>

<pull_request_diff>
$file_diff
</pull_request_diff>
"""

TRIAGE_FILE_DIFF = """
Below the summary, triage the diff as `NEEDS_REVIEW` or `APPROVED`:

- Any modification to logic or functionality, however small, is `NEEDS_REVIEW`.
- Only changes that cannot affect behaviour (typos, formatting, comments, renames for
  clarity) are `APPROVED`.
- When in doubt, triage as `NEEDS_REVIEW`.

Use exactly this format on its own line:
[TRIAGE]: <NEEDS_REVIEW or APPROVED>

Do not explain the triage decision in the summary.
"""

SUMMARIZE_CHANGESETS = """Provided below (<changeSet> tag) are changesets in this pull request.
Changesets are in chronological order and new changesets are appended to the end of the list.
Each consists of filename(s) and the summary of changes for those files, separated by `---`.
Deduplicate and group together files with related or similar changes into a single changeset.
Respond with the updated changesets using the same format as the input.

<changeSet>
$raw_summary
</changeSet>
"""

SUMMARIZE_PREFIX = """Below <summary> tag is the summary of changes you have generated for files:
<summary>
$raw_summary
</summary>

"""

SUMMARIZE = """Provide a comprehensive summary of the changes in this pull request:
1. What was changed and why
2. How the code was modified
3. Any potential impact on the system
"""

SUMMARIZE_RELEASE_NOTES = """Generate concise release notes for this pull request, formatted as:

## Changes
- A bullet list of key changes

## Impact
- How this affects the system

## Notes
- Any warnings or additional information
"""

SUMMARIZE_SHORT = """Provide a concise summary of the changes. It will be used as context while
reviewing each file and must be clear for an AI reviewer to understand.

- Summarize only the changes in the PR and stick to the facts.
- Do not give the reviewer instructions on how to perform the review.
- Do not mention that files need a thorough review.
- Do not exceed 500 words.
"""

REVIEW_FILE_DIFF = """
$system_message

<pull_request_title>
$title
</pull_request_title>

<pull_request_description>
$description
</pull_request_description>

<pull_request_changes>
$short_summary
</pull_request_changes>

## Instructions

Input: new hunks annotated with line numbers and old hunks (replaced code). Hunks are
incomplete code fragments. Comment chains left on the same lines may follow a hunk.
Task: review the new hunks for substantive issues and respond with comments if necessary.
Output: a JSON object with review comments in markdown and exact new-file line ranges.

Only comment on issues that require action. Include a clear explanation of the problem
and a concrete suggestion, with a code example when appropriate.

If there are no issues, respond with "lgtm": true. Always output complete, valid JSON:

{
  "reviews": [
    {"line_start": 22, "line_end": 22, "comment": "`retrn` is a typo; this raises a NameError."}
  ],
  "lgtm": false
}

## Changes made to `$filename` for your review

$patches
"""


def load_system_message(config: dict) -> str:
    """Return the reviewer system message.

    If ``system_message`` is set in config, it is a path (relative to cwd) to a
    Markdown file. Otherwise the built-in default is used.
    """
    custom_path = config.get("system_message")
    if custom_path:
        p = Path(custom_path)
        if not p.exists():
            raise FileNotFoundError(f"System message file not found: {custom_path}")
        return p.read_text()
    return DEFAULT_SYSTEM_MESSAGE


def render_summarize_file_diff(inputs: Inputs, review_simple_changes: bool) -> str:
    template = SUMMARIZE_FILE_DIFF
    if not review_simple_changes:
        template += TRIAGE_FILE_DIFF
    return inputs.render(template)


def render_summarize_changesets(inputs: Inputs) -> str:
    return inputs.render(SUMMARIZE_CHANGESETS)


def render_summarize(inputs: Inputs) -> str:
    return inputs.render(SUMMARIZE_PREFIX + SUMMARIZE)


def render_summarize_release_notes(inputs: Inputs) -> str:
    return inputs.render(SUMMARIZE_PREFIX + SUMMARIZE_RELEASE_NOTES)


def render_summarize_short(inputs: Inputs) -> str:
    return inputs.render(SUMMARIZE_PREFIX + SUMMARIZE_SHORT)


def render_review_file_diff(inputs: Inputs) -> str:
    return inputs.render(REVIEW_FILE_DIFF)

"""Comment tag vocabulary.

These strings are how prwarden recognises its own output on a pull request
across runs. They are embedded as HTML comments so GitHub renders them
invisibly. Changing any of them orphans the state written by earlier runs.
"""

SUMMARIZE_TAG = "<!-- This is an auto-generated comment: summarize by prwarden -->"

COMMENT_TAG = "<!-- This is an auto-generated comment by prwarden -->"
COMMENT_REPLY_TAG = "<!-- This is an auto-generated reply by prwarden -->"

# Human reviewers prefix a comment with this to pin it: it is never deleted
# or resolved automatically.
REQUIRED_PREFIX = "[required]"

RESOLVED_MARKER = "✅ Automatically resolved as non-required comment."

RAW_SUMMARY_START_TAG = "<!-- prwarden raw summary start -->"
RAW_SUMMARY_END_TAG = "<!-- prwarden raw summary end -->"

SHORT_SUMMARY_START_TAG = "<!-- prwarden short summary start -->"
SHORT_SUMMARY_END_TAG = "<!-- prwarden short summary end -->"

COMMIT_IDS_START_TAG = "<!-- prwarden reviewed commit ids start -->"
COMMIT_IDS_END_TAG = "<!-- prwarden reviewed commit ids end -->"

IN_PROGRESS_START_TAG = "<!-- prwarden in progress start -->"
IN_PROGRESS_END_TAG = "<!-- prwarden in progress end -->"

DESCRIPTION_START_TAG = "<!-- prwarden release notes start -->"
DESCRIPTION_END_TAG = "<!-- prwarden release notes end -->"

# Generated-test comments carry the bot tag too but are never reconciled.
AUTO_TEST_TAG = "<!-- This is an auto-generated test by prwarden -->"

IGNORE_KEYWORD = "/prwarden: ignore"

"""Tests for the review pipeline: run_pipeline and run_review."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fakes import BASE, SIMPLE_PATCH, FakeGitHub, FakeModel, changed, make_pr

from prwarden_core.gh.pull_request import Comparison
from prwarden_core.markers import COMMENT_REPLY_TAG, COMMENT_TAG, RESOLVED_MARKER, SUMMARIZE_TAG
from prwarden_core.reviewer import run_pipeline, run_review
from prwarden_core.state import ReviewState
from prwarden_core.threads import ThreadComment, classify

A_COMMENT = json.dumps({"reviews": [{"line_start": 2, "line_end": 2, "comment": "Off-by-one here."}], "lgtm": False})


def first_run_client():
    files = [changed("a.py"), changed("b.py"), changed("logo.png")]
    return FakeGitHub(
        commits=["c1", "h2"],
        comparisons={(BASE, "h2"): Comparison(files=files, commits=["c1", "h2"])},
    )


def run(pr, config, client, model):
    return asyncio.run(run_pipeline(pr, config, client, model, model))


class TestFirstRun:
    def test_reviews_every_file_from_base(self, config):
        client = first_run_client()
        model = FakeModel(reviews={"a.py": A_COMMENT})

        summary = run(make_pr("h2"), config, client, model)

        assert summary.reviewed_files == ["a.py", "b.py"]
        assert summary.skipped_files == ["logo.png"]
        assert summary.total_comments == 1
        assert summary.lgtm_count == 1
        assert summary.failed_files == []

        (review,) = client.reviews
        assert review["commit"] == "h2"
        (posted,) = review["comments"]
        assert (posted["path"], posted["line"]) == ("a.py", 2)
        assert COMMENT_TAG in posted["body"]

    def test_summary_comment_records_state(self, config):
        client = first_run_client()
        run(make_pr("h2"), config, client, FakeModel())

        # Placeholder first, final summary second.
        assert len(client.upserts) == 2
        assert "Currently reviewing" in client.upserts[0]
        final = client.upserts[-1]
        assert final.startswith("Final summary.")
        assert SUMMARIZE_TAG in final
        assert "Currently reviewing" not in final

        state = ReviewState.from_comment(client.issue_comments[0].body)
        assert state.reviewed_commit_ids == ("h2",)
        assert state.short_summary == "Short summary."
        assert "a.py" in state.raw_summary

    def test_release_notes_written_to_description(self, config):
        client = first_run_client()
        run(make_pr("h2"), config, client, FakeModel())
        assert client.description.startswith("Adds a cache layer.")
        assert "- notes" in client.description

    def test_release_notes_can_be_disabled(self, config):
        client = first_run_client()
        run(make_pr("h2"), {**config, "disable_release_notes": True}, client, FakeModel())
        assert client.description is None


class TestIncrementalRun:
    def test_second_push_reviews_only_newly_changed_files(self, config):
        client = first_run_client()
        run(make_pr("h2"), config, client, FakeModel(reviews={"a.py": A_COMMENT}))
        bot_comment_id = client.review_comments[0].id

        client.commits.append("h3")
        client.comparisons[("h2", "h3")] = Comparison(files=[changed("b.py")], commits=["h3"])
        client.comparisons[(BASE, "h3")] = Comparison(
            files=[changed("a.py"), changed("b.py")], commits=["c1", "h2", "h3"]
        )
        model = FakeModel()

        summary = run(make_pr("h3"), config, client, model)

        assert summary.reviewed_files == ["b.py"]
        assert client.reviews[-1]["commit"] == "h3"
        # The unanswered comment from the first run is cleared.
        assert client.deleted == [bot_comment_id]
        summarized = [p for p in model.prompts if "Succinctly summarize" in p]
        assert len(summarized) == 1
        assert "`b.py`" in summarized[0]

        state = ReviewState.from_comment(client.issue_comments[0].body)
        assert state.reviewed_commit_ids == ("h2", "h3")

    def test_nothing_new_returns_none(self, config):
        client = FakeGitHub(commits=["h2"], comparisons={})
        assert run(make_pr("h2"), config, client, FakeModel()) is None
        assert client.upserts == []
        assert client.reviews == []


class TestThreadReconciliation:
    def test_answered_bot_thread_resolved_required_kept(self, config):
        client = first_run_client()

        def add(id, body, in_reply_to_id=None):
            client.review_comments.append(
                ThreadComment(
                    id=id, path="a.py", body=body, line=2, in_reply_to_id=in_reply_to_id, kind=classify(body)
                )
            )

        add(1, f"Consider caching.\n\n{COMMENT_TAG}")
        add(2, "Done in the next push.", in_reply_to_id=1)
        add(3, f"Null check missing.\n\n{COMMENT_TAG}")
        add(4, "[required] please fix before merge", in_reply_to_id=3)

        run(make_pr("h2"), config, client, FakeModel())

        assert client.deleted == []
        assert [root for root, _ in client.replies] == [1]
        assert RESOLVED_MARKER in client.replies[0][1]
        assert COMMENT_REPLY_TAG in client.replies[0][1]

    def test_existing_comments_are_given_to_the_model(self, config):
        client = first_run_client()
        body = "[required] keep the lock"
        client.review_comments.append(ThreadComment(id=1, path="a.py", body=body, line=2, kind=classify(body)))
        model = FakeModel()
        run(make_pr("h2"), config, client, model)
        review_prompts = [p for p in model.prompts if "## Changes made to" in p]
        assert all("keep the lock" in p for p in review_prompts)
        assert any("Comment ID: 1" in p for p in review_prompts if "`a.py`" in p)


class TestFailures:
    def test_summary_failure_recorded_other_files_continue(self, config):
        client = first_run_client()
        summary = run(make_pr("h2"), config, client, FakeModel(fail_summary={"a.py"}))

        # a.py is still reviewed; only its summary is missing.
        assert summary.unsummarized_files == ["a.py"]
        assert summary.failed_files == []
        assert summary.reviewed_files == ["a.py", "b.py"]
        assert "Files not summarized due to errors (1)" in client.upserts[-1]
        assert "model overloaded" in client.upserts[-1]

    def test_review_failure_reported_apart_from_summaries(self, config):
        client = first_run_client()
        summary = run(make_pr("h2"), config, client, FakeModel(reviews={"a.py": ""}))

        assert summary.failed_files == ["a.py"]
        assert summary.unsummarized_files == []
        assert summary.reviewed_files == ["b.py"]
        assert "Files not reviewed due to errors (1)" in client.upserts[-1]

    def test_base_content_failure_does_not_stop_siblings(self, config):
        client = first_run_client()
        client.content_errors["a.py"] = ConnectionError("connection reset")

        summary = run(make_pr("h2"), config, client, FakeModel(reviews={"a.py": A_COMMENT}))

        assert summary.reviewed_files == ["a.py", "b.py"]
        assert summary.total_comments == 1
        assert len(client.reviews) == 1
        assert SUMMARIZE_TAG in client.upserts[-1]

    def test_hunks_over_token_budget_reported_as_partial(self, config):
        patch = SIMPLE_PATCH + "@@ -40,1 +41,21 @@\n tail\n" + "+padding\n" * 20
        client = FakeGitHub(
            commits=["h2"],
            comparisons={(BASE, "h2"): Comparison(files=[changed("a.py", patch)], commits=["h2"])},
        )
        model = FakeModel()

        # Only the oversized hunk costs anything, so the first hunk fits and the second does not.
        def counter(text):
            return text.count("padding")

        summary = asyncio.run(
            run_pipeline(make_pr("h2"), {**config, "heavy_token_limit": 5}, client, model, model, counter)
        )

        assert summary.reviewed_files == ["a.py"]
        (review_prompt,) = [p for p in model.prompts if "## Changes made to" in p]
        assert "new line" in review_prompt
        assert "padding" not in review_prompt
        partial = "Files partially reviewed (token budget) (1)"
        assert partial in client.reviews[0]["body"]
        assert "a.py (1 of 2 hunks, not reviewed from line 41)" in client.upserts[-1]

    def test_truncated_json_is_not_a_failure(self, config):
        client = first_run_client()
        summary = run(make_pr("h2"), config, client, FakeModel(reviews={"a.py": '{"reviews":[{"line_start":5'}))
        assert summary.failed_files == []
        assert summary.total_comments == 0

    def test_failed_submission_does_not_record_commit(self, config):
        client = first_run_client()
        client.fail_submit = True

        summary = run(make_pr("h2"), config, client, FakeModel(reviews={"a.py": A_COMMENT}))

        assert summary.total_comments == 0
        assert ReviewState.from_comment(client.issue_comments[0].body).reviewed_commit_ids == ()
        assert "review submission" in client.upserts[-1]

    def test_crash_after_placeholder_clears_it(self, config):
        class OutageModel(FakeModel):
            async def chat(self, prompt, prefix=""):
                if "<changeSet>" in prompt:
                    raise RuntimeError("service unavailable")
                return await super().chat(prompt, prefix)

        client = first_run_client()
        with pytest.raises(RuntimeError, match="service unavailable"):
            run(make_pr("h2"), config, client, OutageModel())

        assert "Currently reviewing" in client.upserts[0]
        assert "Currently reviewing" not in client.issue_comments[0].body
        assert client.reviews == []


class TestOptions:
    def test_disable_review_only_summarizes(self, config):
        client = first_run_client()
        model = FakeModel()
        summary = run(make_pr("h2"), {**config, "disable_review": True}, client, model)

        assert client.reviews == []
        assert not any("## Changes made to" in p for p in model.prompts)
        assert summary.total_comments == 0
        assert ReviewState.from_comment(client.issue_comments[0].body).reviewed_commit_ids == ()

    def test_trivial_changes_skip_review(self, config):
        client = first_run_client()
        model = FakeModel(triage={"b.py": "APPROVED"})
        run(make_pr("h2"), config, client, model)

        reviewed = [p for p in model.prompts if "## Changes made to" in p]
        assert len(reviewed) == 1
        assert "`a.py`" in reviewed[0]
        assert "b.py (trivial changes)" in client.upserts[-1]

    def test_review_simple_changes_reviews_everything(self, config):
        client = first_run_client()
        model = FakeModel(triage={"b.py": "APPROVED"})
        run(make_pr("h2"), {**config, "review_simple_changes": True}, client, model)
        assert len([p for p in model.prompts if "## Changes made to" in p]) == 2

    def test_max_files_limit(self, config):
        client = first_run_client()
        summary = run(make_pr("h2"), {**config, "max_files": 1}, client, FakeModel())
        assert summary.reviewed_files == ["a.py"]
        assert "b.py" in summary.skipped_files

    def test_exclude_patterns(self, config):
        client = first_run_client()
        summary = run(make_pr("h2"), {**config, "exclude": ["b.py"]}, client, FakeModel())
        assert summary.reviewed_files == ["a.py"]

    def test_draft_is_skipped_without_remote_calls(self, config):
        client = MagicMock()
        assert run(make_pr("h2", draft=True), config, client, FakeModel()) is None
        client.assert_not_called()
        assert client.method_calls == []


class TestRunReview:
    def test_ignored_pull_request_never_contacts_github(self, config, tmp_path, mocker):
        event = tmp_path / "event.json"
        event.write_text(json.dumps(make_pr("h2", body="skip this /prwarden: ignore").payload))
        get_repo = mocker.patch("prwarden_core.reviewer.get_repo")

        assert run_review("o/r", config, event_name="pull_request", event_path=str(event)) is None
        get_repo.assert_not_called()

    def test_manual_run_builds_context_from_pull(self, config, mocker):
        repo = MagicMock()
        pr = repo.get_pull.return_value
        pr.number, pr.title, pr.body, pr.draft = 7, "t", "b", False
        pr.base.sha, pr.head.sha = BASE, "h2"
        mocker.patch("prwarden_core.reviewer._get_chat_model", return_value=FakeModel())
        pipeline = mocker.patch("prwarden_core.reviewer.run_pipeline", new=AsyncMock(return_value="done"))

        assert run_review("o/r", config, pr_number=7, repo_obj=repo) == "done"
        ctx = pipeline.call_args.args[0]
        assert (ctx.number, ctx.head_sha) == (7, "h2")

    def test_requires_event_or_pr_number(self, config):
        with pytest.raises(ValueError):
            run_review("o/r", config)

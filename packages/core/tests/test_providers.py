"""Tests for chat model providers and review response parsing.

Shared behaviour (chat, _call_with_retry, parse_review) is tested once via a
lightweight stub; provider tests cover only SDK setup and _call_api.
"""

import asyncio
import json
import types
from unittest.mock import MagicMock, patch

from prwarden_core.providers.anthropic import AnthropicChatModel
from prwarden_core.providers.base import BaseChatModel, Verdict, is_approval, parse_review, strip_code_fences
from prwarden_core.providers.openai import OpenAIChatModel


class _StubModel(BaseChatModel):
    def __init__(self, responses):
        self._responses = list(responses)
        self.calls = 0

    def _call_api(self, prompt: str, prefix: str) -> str:
        self.calls += 1
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


# ---------------------------------------------------------------------------
# Shared behaviour
# ---------------------------------------------------------------------------


class TestRetry:
    def test_returns_after_transient_error(self):
        model = _StubModel([RuntimeError("503"), "ok"])
        with patch("prwarden_core.providers.base.time.sleep"):
            assert asyncio.run(model.chat("hi")) == "ok"
        assert model.calls == 2

    def test_gives_empty_string_after_max_retries(self):
        model = _StubModel([RuntimeError("x")] * 3)
        with patch("prwarden_core.providers.base.time.sleep") as sleep:
            assert asyncio.run(model.chat("hi")) == ""
        assert model.calls == 3
        assert [c.args[0] for c in sleep.call_args_list] == [1, 2]


class TestParseReview:
    def test_parses_comments(self):
        raw = json.dumps({"reviews": [{"line_start": 3, "line_end": 5, "comment": "Missing check"}], "lgtm": False})
        result = parse_review(raw, "a.py")
        assert len(result.comments) == 1
        c = result.comments[0]
        assert (c.path, c.start_line, c.end_line) == ("a.py", 3, 5)
        assert c.verdict is Verdict.ACTIONABLE
        assert result.lgtm is False

    def test_lgtm_with_no_reviews(self):
        result = parse_review('{"reviews":[],"lgtm":true}', "a.py")
        assert result.comments == []
        assert result.lgtm is True

    def test_truncated_json_gives_empty_result(self):
        result = parse_review('{"reviews":[{"line_start":5', "a.py")
        assert result.comments == []
        assert result.lgtm is False

    def test_non_object_gives_empty_result(self):
        assert parse_review("[1, 2]", "a.py").comments == []

    def test_entry_without_comment_dropped_missing_lines_unanchored(self):
        raw = json.dumps({"reviews": [{"line_start": 1}, {"comment": "somewhere"}]})
        result = parse_review(raw, "a.py")
        assert len(result.comments) == 1
        assert not result.comments[0].anchored

    def test_approval_comment_gets_lgtm_verdict(self):
        raw = json.dumps({"reviews": [{"line_start": 1, "line_end": 1, "comment": "LGTM!"}]})
        assert parse_review(raw, "a.py").comments[0].verdict is Verdict.LGTM

    def test_strips_outer_fence_only(self):
        payload = json.dumps({"reviews": [{"line_start": 1, "line_end": 1, "comment": "Use:\n```python\nfoo()\n```"}]})
        result = parse_review(f"```json\n{payload}\n```", "a.py")
        assert "```python" in result.comments[0].comment
        assert strip_code_fences("```\n{}\n```") == "{}"

    def test_is_approval_case_insensitive(self):
        assert is_approval("Looks good to me.")
        assert not is_approval("This leaks a file handle.")


# ---------------------------------------------------------------------------
# Provider specifics
# ---------------------------------------------------------------------------


class TestAnthropicChatModel:
    def test_defaults(self):
        assert "claude" in AnthropicChatModel.DEFAULT_MODEL
        assert AnthropicChatModel.TEMPERATURE == 0.3

    def test_prefill_is_sent_and_returned(self):
        from anthropic.types import TextBlock

        with patch("anthropic.Anthropic") as sdk:
            model = AnthropicChatModel(api_key="key", model="claude-test")
        model.client = MagicMock()
        model.client.messages.create.return_value = types.SimpleNamespace(
            content=[TextBlock(type="text", text='"lgtm": true}')]
        )

        assert model._call_api("prompt", "{") == '{"lgtm": true}'
        kwargs = model.client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-test"
        assert kwargs["messages"][-1] == {"role": "assistant", "content": "{"}
        sdk.assert_called_once_with(api_key="key")


class TestOpenAIChatModel:
    def test_raises_import_error_without_sdk(self):
        import prwarden_core.providers.openai as openai_mod

        real_openai = openai_mod._OpenAI
        openai_mod._OpenAI = None
        try:
            OpenAIChatModel(api_key="key")
            assert False, "Expected ImportError"
        except ImportError:
            pass
        finally:
            openai_mod._OpenAI = real_openai

    def test_json_mode_only_for_object_prefix(self):
        with patch("prwarden_core.providers.openai._OpenAI"):
            model = OpenAIChatModel(api_key="key")
        message = types.SimpleNamespace(content=" summary ")
        model.client.chat.completions.create.return_value = types.SimpleNamespace(
            choices=[types.SimpleNamespace(message=message)]
        )

        assert model._call_api("p", "") == "summary"
        assert "response_format" not in model.client.chat.completions.create.call_args.kwargs

        model._call_api("p", "{")
        kwargs = model.client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["model"] == "gpt-4o"

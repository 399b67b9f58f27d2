from __future__ import annotations

from prwarden_core.providers.base import BaseChatModel


class AnthropicChatModel(BaseChatModel):
    DEFAULT_MODEL = "claude-sonnet-4-20250514"
    # Slightly warmer than the OpenAI provider: summaries read more naturally
    # and the prefilled "{" keeps review output on the JSON rails anyway.
    TEMPERATURE = 0.3

    def __init__(self, api_key: str, model: str | None = None):
        try:
            from anthropic import Anthropic
        except ImportError:
            raise ImportError(
                "The 'anthropic' package is required for this provider. "
                "Install it with: pip install 'prwarden[anthropic]'"
            )
        self.client = Anthropic(api_key=api_key)
        self.model = model or self.DEFAULT_MODEL

    def _call_api(self, prompt: str, prefix: str) -> str:
        # Imported inside the method because the anthropic package is optional;
        # __init__ already validated it is installed before we reach here.
        from anthropic.types import TextBlock

        messages = [{"role": "user", "content": prompt}]
        if prefix:
            # Assistant prefill: the model continues from prefix.
            messages.append({"role": "assistant", "content": prefix})
        response = self.client.messages.create(
            model=self.model,
            messages=messages,
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
        )
        text = "".join(block.text for block in response.content if isinstance(block, TextBlock))
        return (prefix + text).strip() if text else ""

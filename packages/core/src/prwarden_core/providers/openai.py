from __future__ import annotations

try:
    from openai import OpenAI as _OpenAI
except ImportError:
    _OpenAI = None  # type: ignore[assignment,misc]

from prwarden_core.providers.base import BaseChatModel


class OpenAIChatModel(BaseChatModel):
    DEFAULT_MODEL = "gpt-4o"
    TEMPERATURE = 0.2

    def __init__(self, api_key: str, model: str | None = None):
        if _OpenAI is None:
            raise ImportError(
                "The 'openai' package is required for this provider. " "Install it with: pip install 'prwarden[openai]'"
            )
        self.client = _OpenAI(api_key=api_key)
        self.model = model or self.DEFAULT_MODEL

    def _call_api(self, prompt: str, prefix: str) -> str:
        # Chat completions have no assistant prefill; a JSON-object response
        # format gives the same guarantee when the caller seeds "{".
        kwargs = {"response_format": {"type": "json_object"}} if prefix == "{" else {}
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
            **kwargs,
        )
        return (response.choices[0].message.content or "").strip()

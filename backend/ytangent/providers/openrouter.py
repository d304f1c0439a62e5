"""OpenRouter: one key, many upstream models, OpenAI wire protocol.

An exhausted credit balance comes back as HTTP 402, which the shared
adapter already reports as a quota error.
"""

import os

from openai import AsyncOpenAI

from ytangent.providers.openai_compat import OpenAICompatibleProvider

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class OpenRouterProvider(OpenAICompatibleProvider):
    suggested_models = [
        "openai/gpt-4o-mini",
        "anthropic/claude-sonnet-4-5",
        "google/gemini-2.5-flash",
        "deepseek/deepseek-chat",
    ]

    @classmethod
    def from_env(cls) -> "OpenRouterProvider | None":
        api_key = os.environ.get("OPENROUTER_API_KEY")
        if not api_key:
            return None
        client = AsyncOpenAI(
            api_key=api_key,
            base_url=OPENROUTER_BASE_URL,
            default_headers={"X-Title": "ytangent"},
        )
        return cls(client)

    @property
    def name(self) -> str:
        return "openrouter"

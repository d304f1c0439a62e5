"""OpenAI's own chat completions endpoint."""

import os

from openai import AsyncOpenAI

from ytangent.providers.openai_compat import OpenAICompatibleProvider


class OpenAIProvider(OpenAICompatibleProvider):
    suggested_models = ["gpt-4o-mini", "gpt-4o", "gpt-4.1", "gpt-4.1-mini", "o4-mini"]

    @classmethod
    def from_env(cls) -> "OpenAIProvider | None":
        api_key = os.environ.get("OPENAI_API_KEY")
        return cls(AsyncOpenAI(api_key=api_key)) if api_key else None

    @property
    def name(self) -> str:
        return "openai"

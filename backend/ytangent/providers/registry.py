"""Process-wide table of configured providers, keyed by provider name."""

import logging

from ytangent.providers.base import LLMProvider

logger = logging.getLogger(__name__)

_providers: dict[str, LLMProvider] = {}


class ProviderNotFoundError(LookupError):
    def __init__(self, name: str, available: list[str]) -> None:
        self.name = name
        super().__init__(
            f"Unknown provider {name!r}; configured: {', '.join(available) or 'none'}"
        )


def register_provider(provider: LLMProvider) -> None:
    if provider.name in _providers:
        logger.info("Replacing provider %s", provider.name)
    _providers[provider.name] = provider


def get_provider(name: str) -> LLMProvider:
    provider = _providers.get(name)
    if provider is None:
        raise ProviderNotFoundError(name, list(_providers))
    return provider


def list_providers() -> list[str]:
    return list(_providers)


def get_all_providers() -> list[LLMProvider]:
    return list(_providers.values())


def clear_providers() -> None:
    _providers.clear()

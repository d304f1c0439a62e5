"""Provider registry lookups."""

import pytest

from ytangent.providers.registry import (
    ProviderNotFoundError,
    clear_providers,
    get_all_providers,
    get_provider,
    list_providers,
    register_provider,
)
from tests.fixtures import FakeProvider


@pytest.fixture(autouse=True)
def _clean():
    clear_providers()
    yield
    clear_providers()


class TestRegistry:
    def test_register_and_get(self):
        provider = FakeProvider()
        register_provider(provider)
        assert get_provider("fake") is provider
        assert list_providers() == ["fake"]
        assert get_all_providers() == [provider]

    def test_reregister_replaces(self):
        register_provider(FakeProvider())
        second = FakeProvider()
        register_provider(second)
        assert get_provider("fake") is second
        assert len(list_providers()) == 1

    def test_unknown_raises_with_available_names(self):
        register_provider(FakeProvider())
        with pytest.raises(ProviderNotFoundError, match="fake"):
            get_provider("missing")

    def test_empty_registry(self):
        with pytest.raises(ProviderNotFoundError, match="none"):
            get_provider("anything")

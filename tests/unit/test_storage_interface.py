"""Unit tests for the storage, provider and collaborator ABCs."""

import pytest

from croupier.backends.memory import InMemoryCacheBackend
from croupier.interfaces.collaborators import (
    BusinessRuleService,
    MetadataRepository,
    PromptTemplateStore,
)
from croupier.interfaces.llm import BaseLLMProvider
from croupier.interfaces.storage import CacheStorageBackend
from tests.conftest import ScriptedProvider


class TestCacheStorageBackendABC:
    def test_cannot_instantiate_abc(self):
        with pytest.raises(TypeError):
            CacheStorageBackend()

    def test_partial_implementation_fails(self):
        class PartialBackend(CacheStorageBackend):
            async def initialize(self, collection_name, dimension, **kwargs):
                pass

            # Missing get, upsert, delete, search, scroll, count, close

        with pytest.raises(TypeError):
            PartialBackend()

    async def test_async_context_manager_closes(self):
        backend = InMemoryCacheBackend()
        async with backend as b:
            await b.initialize("c", 4)
            assert await b.count("c") == 0
        assert backend._collections == {}


class TestBaseLLMProviderABC:
    def test_cannot_instantiate_abc(self):
        with pytest.raises(TypeError):
            BaseLLMProvider()

    async def test_close_defaults_to_noop(self):
        class Minimal(BaseLLMProvider):
            @property
            def provider_id(self):
                return "minimal"

            async def generate(self, prompt, config):
                raise NotImplementedError

        assert await Minimal().close() is None

    def test_scripted_provider_is_a_provider(self):
        assert isinstance(ScriptedProvider("p"), BaseLLMProvider)


@pytest.mark.parametrize("abc", [MetadataRepository, BusinessRuleService, PromptTemplateStore])
def test_collaborator_abcs_cannot_be_instantiated(abc):
    with pytest.raises(TypeError):
        abc()

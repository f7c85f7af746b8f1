"""End-to-end integration tests: JSON catalog + Qdrant memory + Croupier pipeline."""

import json

import pytest

from croupier.backends.qdrant import QdrantBackend
from croupier.collaborators import load_catalog
from croupier.config import CacheSettings
from croupier.core import Croupier
from croupier.types import CacheHitKind, ErrorKind, PromptTemplate
from tests.conftest import (
    REQUEST_TIME,
    BagOfWordsEmbedder,
    ScriptedProvider,
    make_settings,
    no_sleep,
    sample_columns,
    sample_relationships,
    sample_tables,
)

pytestmark = pytest.mark.integration

GGR_QUESTION = "What was the total GGR for VIP players last month?"

SHORT_TEMPLATE = PromptTemplate(
    template_key="short",
    content="Database: {DATABASE_NAME}\n\n{SCHEMA_DEFINITION}\n\nQuestion: {USER_QUESTION}",
)


@pytest.fixture
def catalog_file(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text(
        json.dumps(
            {
                "tables": [t.model_dump(mode="json") for t in sample_tables()],
                "columns": [c.model_dump(mode="json") for c in sample_columns()],
                "relationships": [r.model_dump(mode="json") for r in sample_relationships()],
                "business_rules": [
                    {
                        "rule_key": "ggr_definition",
                        "rule_name": "GGR definition",
                        "rule_content": "GGR is total bets minus total wins",
                        "rule_category": "domain",
                    }
                ],
                "templates": [SHORT_TEMPLATE.model_dump(mode="json")],
            }
        ),
        encoding="utf-8",
    )
    return str(path)


@pytest.fixture
def settings():
    return make_settings(cache=CacheSettings(backend="qdrant", qdrant_mode="memory"))


@pytest.fixture
def provider():
    return ScriptedProvider("primary")


@pytest.fixture
async def croupier(catalog_file, settings, provider):
    metadata, rules, templates = load_catalog(catalog_file)
    c = Croupier(
        BagOfWordsEmbedder(),
        metadata,
        rules,
        templates,
        providers=[provider],
        settings=settings,
        sleep=no_sleep,
    )
    await c.start()
    yield c
    await c.close()


class TestPipelineOnQdrant:
    async def test_backend_chosen_from_settings(self, croupier):
        assert isinstance(croupier._cache.backend, QdrantBackend)

    async def test_generate_then_cached(self, croupier, provider):
        first = await croupier.generate(GGR_QUESTION, timestamp=REQUEST_TIME)
        assert first.success, first.error_message
        assert "GGR is total bets minus total wins" in first.prompt
        assert first.join_path.render() in first.prompt

        second = await croupier.generate(GGR_QUESTION, timestamp=REQUEST_TIME)
        assert second.cache_kind == CacheHitKind.EXACT
        assert second.sql == first.sql
        assert provider.calls == 1

    async def test_template_from_catalog(self, croupier, provider):
        result = await croupier.generate(GGR_QUESTION, timestamp=REQUEST_TIME, template_key="short")
        assert result.success
        assert result.prompt.startswith("Database: DailyActionsDB")
        assert result.prompt.endswith(f"Question: {GGR_QUESTION}")
        assert provider.prompts == [result.prompt]

    async def test_unknown_term_reports_suggestion(self, croupier, provider):
        result = await croupier.generate("Show the total gggr last month", timestamp=REQUEST_TIME)
        assert result.error_kind == ErrorKind.SCHEMA_RESOLUTION
        assert provider.calls == 0

    async def test_clear_caches(self, croupier):
        await croupier.generate(GGR_QUESTION, timestamp=REQUEST_TIME)
        assert await croupier.clear_caches() == 1
        assert croupier.stats["cache"]["writes"] == 1


class TestRealEmbeddings:
    async def test_fastembed_pipeline(self, catalog_file):
        pytest.importorskip("fastembed")
        from croupier.embeddings.fastembed_adapter import FastEmbedAdapter

        metadata, rules, templates = load_catalog(catalog_file)
        async with Croupier(
            FastEmbedAdapter(),
            metadata,
            rules,
            templates,
            providers=[ScriptedProvider("primary")],
            settings=make_settings(),
            sleep=no_sleep,
        ) as c:
            result = await c.generate(GGR_QUESTION, timestamp=REQUEST_TIME)
        assert result.schema_selection is not None
        assert "tbl_Daily_actions" in result.schema_selection.table_names()
        assert result.prompt

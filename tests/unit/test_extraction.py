"""Unit tests for croupier.extraction."""

from datetime import date

import pytest

from croupier.embeddings.service import EmbeddingService
from croupier.exceptions import ExtractionError
from croupier.extraction import (
    EntityIntentExtractor,
    complexity_score,
    dedupe_mentions,
    estimate_complexity_from_text,
)
from croupier.types import EntityMention, EntityType, Query, QueryComplexity, QueryIntent
from croupier.utils.normalization import normalize_question
from tests.conftest import REQUEST_TIME


def make_query(text: str) -> Query:
    return Query(raw_text=text, normalized_text=normalize_question(text), timestamp=REQUEST_TIME)


@pytest.fixture
def extractor(bow_embedder):
    return EntityIntentExtractor(EmbeddingService(bow_embedder))


def _by_type(extraction, entity_type):
    return [e for e in extraction.entities if e.entity_type == entity_type]


class TestScenario:
    async def test_ggr_for_vip_players_last_month(self, extractor):
        extraction = await extractor.extract(
            make_query("What was the total GGR for VIP players last month?")
        )
        assert extraction.intent == QueryIntent.AGGREGATE

        metric = _by_type(extraction, EntityType.METRIC)
        assert len(metric) == 1
        assert metric[0].normalized_value == "ggr"
        assert metric[0].subtype == "term"
        assert metric[0].confidence >= 0.9
        assert "tbl_Daily_actions" in metric[0].related_tables

        player = _by_type(extraction, EntityType.PLAYER)
        assert [p.normalized_value for p in player] == ["segment:vip"]

        temporal = _by_type(extraction, EntityType.TEMPORAL)
        assert len(temporal) == 1
        assert temporal[0].temporal_range.start == date(2024, 5, 1)
        assert temporal[0].temporal_range.end == date(2024, 5, 31)

        assert extraction.complexity == QueryComplexity.MEDIUM

    async def test_entities_ordered_by_position(self, extractor):
        extraction = await extractor.extract(
            make_query("What was the total GGR for VIP players last month?")
        )
        starts = [e.start for e in extraction.entities]
        assert starts == sorted(starts)


class TestIntent:
    async def test_top_n(self, extractor):
        extraction = await extractor.extract(make_query("Top 10 players by deposits this week"))
        assert extraction.intent == QueryIntent.TOP_N

    async def test_trend(self, extractor):
        extraction = await extractor.extract(make_query("Show the daily GGR trend for slots"))
        assert extraction.intent == QueryIntent.TREND

    async def test_defaults_to_select(self, extractor):
        extraction = await extractor.extract(make_query("zzz qqq"))
        assert extraction.intent == QueryIntent.SELECT
        assert extraction.entities == []

    async def test_rule_scores_without_embeddings(self, bow_embedder):
        bow_embedder.fail = True
        extractor = EntityIntentExtractor(EmbeddingService(bow_embedder))
        extraction = await extractor.extract(make_query("How many deposits this week"))
        assert extraction.intent == QueryIntent.AGGREGATE
        assert extraction.intent_scores["aggregate"] == 1.0

    async def test_scores_reported_per_intent(self, extractor):
        extraction = await extractor.extract(make_query("Compare casino and sport bets this month"))
        assert extraction.intent == QueryIntent.COMPARISON
        assert set(extraction.intent_scores) == {i.value for i in QueryIntent}


class TestEntities:
    async def test_empty_question_rejected(self, extractor):
        with pytest.raises(ExtractionError):
            await extractor.extract(make_query("   "))

    async def test_phrase_synonym_maps_to_key(self, extractor):
        extraction = await extractor.extract(make_query("gross gaming revenue by provider"))
        metric = _by_type(extraction, EntityType.METRIC)
        assert [m.normalized_value for m in metric] == ["ggr"]
        assert metric[0].confidence == pytest.approx(0.9)

    async def test_amount_threshold(self, extractor):
        extraction = await extractor.extract(make_query("Players with deposits over £1,000"))
        values = [e.normalized_value for e in _by_type(extraction, EntityType.FINANCIAL)]
        assert "deposit" in values
        assert "gt 1000.00 GBP" in values

    async def test_amount_with_suffix_and_word_currency(self, extractor):
        extraction = await extractor.extract(make_query("bets under 5k euros"))
        values = [e.normalized_value for e in _by_type(extraction, EntityType.FINANCIAL)]
        assert "lt 5000.00 EUR" in values

    async def test_amount_followed_by_word_starting_with_suffix_letter(self, extractor):
        extraction = await extractor.extract(make_query("deposits over $500 made by VIP players"))
        values = [e.normalized_value for e in _by_type(extraction, EntityType.FINANCIAL)]
        assert "gt 500.00 USD" in values
        assert not any("500000" in v for v in values)

    @pytest.mark.parametrize(
        "text, expected",
        [("wins above $2m", "gt 2000000.00 USD"), ("bets over £1.5 k", "gt 1500.00 GBP")],
    )
    async def test_amount_multiplier_suffix(self, extractor, text, expected):
        extraction = await extractor.extract(make_query(text))
        values = [e.normalized_value for e in _by_type(extraction, EntityType.FINANCIAL)]
        assert expected in values

    async def test_player_id(self, extractor):
        extraction = await extractor.extract(make_query("Drill into the transactions of player 123"))
        players = _by_type(extraction, EntityType.PLAYER)
        assert players[0].normalized_value == "player_id:123"
        assert players[0].confidence == pytest.approx(0.95)

    async def test_game_provider_and_type(self, extractor):
        extraction = await extractor.extract(make_query("RTP of NetEnt slots"))
        values = {e.normalized_value for e in _by_type(extraction, EntityType.GAME)}
        assert values == {"provider:netent", "game_type:slots"}
        assert [m.normalized_value for m in _by_type(extraction, EntityType.METRIC)] == ["rtp"]

    async def test_metric_cue(self, extractor):
        extraction = await extractor.extract(make_query("deposit growth"))
        cues = [m for m in _by_type(extraction, EntityType.METRIC) if m.subtype == "cue"]
        assert [c.normalized_value for c in cues] == ["growth"]

    async def test_custom_terms(self, bow_embedder):
        from croupier.types import DomainTerm

        terms = [
            DomainTerm(
                key="ltv",
                canonical="Lifetime Value",
                entity_type=EntityType.METRIC,
                synonyms=["ltv", "lifetime value"],
                related_tables=["tbl_Daily_actions_players"],
            )
        ]
        extractor = EntityIntentExtractor(EmbeddingService(bow_embedder), terms=terms)
        extraction = await extractor.extract(make_query("Average lifetime value of VIP players"))
        assert "ltv" in [e.normalized_value for e in extraction.entities]
        assert extractor.terms == terms


def _mention(entity_type, start, end, confidence, value="x"):
    return EntityMention(
        entity_type=entity_type,
        text="t" * (end - start),
        start=start,
        end=end,
        confidence=confidence,
        normalized_value=value,
    )


class TestDedupe:
    def test_higher_confidence_wins(self):
        kept = dedupe_mentions(
            [
                _mention(EntityType.PLAYER, 0, 7, 0.7, "generic"),
                _mention(EntityType.PLAYER, 0, 11, 0.8, "segment"),
            ]
        )
        assert [m.normalized_value for m in kept] == ["segment"]

    def test_longer_span_wins_tie(self):
        kept = dedupe_mentions(
            [
                _mention(EntityType.METRIC, 6, 20, 0.9, "short"),
                _mention(EntityType.METRIC, 0, 20, 0.9, "long"),
            ]
        )
        assert [m.normalized_value for m in kept] == ["long"]

    def test_different_types_may_overlap(self):
        kept = dedupe_mentions(
            [
                _mention(EntityType.METRIC, 0, 5, 0.9),
                _mention(EntityType.FINANCIAL, 0, 5, 0.9),
            ]
        )
        assert len(kept) == 2


class TestComplexity:
    def test_score(self):
        entities = [
            _mention(EntityType.METRIC, 0, 3, 0.9),
            _mention(EntityType.TEMPORAL, 4, 8, 0.9),
        ]
        assert complexity_score(entities, QueryIntent.AGGREGATE) == 2 + 3 + 2
        assert complexity_score(entities, QueryIntent.TREND) == 2 + 3 + 2 + 2

    @pytest.mark.parametrize(
        "words, expected",
        [
            (3, QueryComplexity.SIMPLE),
            (8, QueryComplexity.SIMPLE),
            (12, QueryComplexity.MEDIUM),
            (25, QueryComplexity.COMPLEX),
            (40, QueryComplexity.VERY_COMPLEX),
        ],
    )
    def test_estimate_from_text(self, words, expected):
        assert estimate_complexity_from_text(" ".join(["word"] * words)) == expected

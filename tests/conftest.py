"""Shared pytest fixtures for Croupier tests."""

import asyncio
import hashlib
import re
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Union

import pytest

from croupier.collaborators import (
    InMemoryBusinessRuleService,
    InMemoryMetadataRepository,
    InMemoryTemplateStore,
)
from croupier.config import ProviderSettings, RetryPolicy, Settings
from croupier.exceptions import EmbeddingUnavailable
from croupier.interfaces.embedder import BaseEmbedder
from croupier.interfaces.llm import BaseLLMProvider
from croupier.types import (
    BusinessDomain,
    BusinessRule,
    ColumnInfo,
    ColumnMetadata,
    ComplianceRule,
    ExampleQuery,
    JoinEdge,
    LLMResponse,
    QueryComplexity,
    QueryIntent,
    SchemaCatalog,
    SemanticEnrichment,
    TableInfo,
    TableMetadata,
)
from croupier.utils.nlp import stem

# Reference request time used across tests: "last month" is May 2024.
REQUEST_TIME = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)

GOOD_GGR_SQL = """```sql
SELECT SUM((da.BetsCasino + da.BetsSport + da.BetsLive)
         - (da.WinsCasino + da.WinsSport + da.WinsLive)) AS GGR
FROM tbl_Daily_actions da
INNER JOIN tbl_Daily_actions_players p ON da.PlayerID = p.PlayerID
WHERE p.VIPLevel = 'VIP'
  AND da.Date BETWEEN '2024-05-01' AND '2024-05-31'
```"""


class MockEmbedder(BaseEmbedder):
    """Deterministic embedder for unit tests.

    Generates vectors by hashing the input text and spreading the hash
    across the requested dimension. Identical inputs always produce
    identical vectors.
    """

    def __init__(self, dimension: int = 64):
        self._dimension = dimension
        self._model_name = "mock-embedder"
        self.calls = 0

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return self._model_name

    async def aembed(self, text: str) -> List[float]:
        self.calls += 1
        h = hashlib.sha256(text.lower().encode()).hexdigest()
        values = []
        for i in range(self._dimension):
            byte_val = int(h[(i * 2) % len(h) : (i * 2 + 2) % len(h) or len(h)], 16)
            values.append((byte_val / 255.0) * 2 - 1)
        magnitude = sum(v**2 for v in values) ** 0.5
        return [v / magnitude for v in values] if magnitude > 0 else values

    async def aembed_batch(self, texts: List[str]) -> List[List[float]]:
        return [await self.aembed(t) for t in texts]


# Fixed vocabulary: vector[i] counts occurrences of BOW_VOCABULARY[i].
BOW_VOCABULARY = [
    "ggr", "ngr", "revenue", "vip", "player", "deposit", "withdrawal", "bet",
    "win", "game", "slot", "provider", "transaction", "bonus", "month",
    "daily", "segment",
]


class BagOfWordsEmbedder(BaseEmbedder):
    """Counts vocabulary words; similarity is plain word overlap.

    Words outside :data:`BOW_VOCABULARY` are ignored, so every component
    is non-negative and cosine similarities are easy to work out by hand.
    """

    def __init__(self):
        self._index = {w: i for i, w in enumerate(BOW_VOCABULARY)}
        self.calls = 0
        self.fail = False

    @property
    def dimension(self) -> int:
        return len(BOW_VOCABULARY)

    @property
    def model_name(self) -> str:
        return "bag-of-words"

    async def aembed(self, text: str) -> List[float]:
        self.calls += 1
        if self.fail:
            raise EmbeddingUnavailable("bag-of-words embedder is down")
        vector = [0.0] * self.dimension
        for token in re.findall(r"[a-z0-9]+", text.lower()):
            index = self._index.get(stem(token))
            if index is not None:
                vector[index] += 1.0
        return vector

    async def aembed_batch(self, texts: List[str]) -> List[List[float]]:
        return [await self.aembed(t) for t in texts]


class ScriptedProvider(BaseLLMProvider):
    """Replays a script of responses and exceptions, one item per call.

    The last item repeats once the script is exhausted. A float item is
    treated as a delay in seconds before returning ``GOOD_GGR_SQL``.
    """

    def __init__(self, provider_id: str, script: Sequence[Union[str, Exception, float]] = (GOOD_GGR_SQL,)):
        self._provider_id = provider_id
        self._script = list(script)
        self.calls = 0
        self.prompts: List[str] = []
        self.closed = False

    @property
    def provider_id(self) -> str:
        return self._provider_id

    async def generate(self, prompt: str, config: ProviderSettings) -> LLMResponse:
        item = self._script[min(self.calls, len(self._script) - 1)]
        self.calls += 1
        self.prompts.append(prompt)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, float):
            await asyncio.sleep(item)
            item = GOOD_GGR_SQL
        return LLMResponse(text=item, tokens_used=42, provider_id=self._provider_id, model=config.model)

    async def close(self) -> None:
        self.closed = True


async def no_sleep(seconds: float) -> None:
    return None


def make_settings(
    providers: Optional[List[ProviderSettings]] = None, **overrides
) -> Settings:
    """Test settings: no backoff delays, one provider unless given."""
    values = {
        "providers": providers
        if providers is not None
        else [ProviderSettings(provider_id="primary", priority=2.0)],
        "retry": RetryPolicy(max_retries=3, initial_delay=0.0, max_delay=0.0),
    }
    values.update(overrides)
    return Settings(**values)


def _table(name: str, purpose: str, importance: float, keywords: List[str]) -> TableMetadata:
    return TableMetadata(
        info=TableInfo(
            name=name,
            business_purpose=purpose,
            domain_classification="gaming",
            importance_score=importance,
        ),
        semantic=SemanticEnrichment(subject=name, keywords=keywords),
    )


def _column(table: str, name: str, data_type: str, meaning: str, importance: float = 0.5) -> ColumnMetadata:
    return ColumnMetadata(
        info=ColumnInfo(
            table_name=table,
            name=name,
            data_type=data_type,
            business_meaning=meaning,
            importance_score=importance,
        )
    )


def sample_tables() -> List[TableMetadata]:
    return [
        _table(
            "tbl_Daily_actions",
            "Daily player activity with bets, wins and GGR",
            0.9,
            ["ggr", "vip", "player", "bet", "win", "deposit"],
        ),
        _table(
            "tbl_Daily_actions_players",
            "Player dimension with VIP level and registration details",
            0.8,
            ["player", "vip", "segment", "registration"],
        ),
        _table(
            "Games",
            "Game catalogue with provider and RTP",
            0.6,
            ["game", "slot", "provider", "rtp"],
        ),
        _table(
            "tbl_Daily_actions_games",
            "Daily bets and wins per game",
            0.7,
            ["game", "bet", "win"],
        ),
        _table(
            "tbl_Daily_actionsGBP_transactions",
            "Deposit and withdrawal transactions in GBP",
            0.7,
            ["deposit", "withdrawal", "transaction"],
        ),
    ]


def sample_columns() -> List[ColumnMetadata]:
    da, players, games = "tbl_Daily_actions", "tbl_Daily_actions_players", "Games"
    return [
        _column(da, "PlayerID", "int", "Player identifier", 0.9),
        _column(da, "Date", "date", "Activity date", 0.9),
        _column(da, "BetsCasino", "money", "Casino bets amount", 0.8),
        _column(da, "WinsCasino", "money", "Casino wins amount", 0.8),
        _column(da, "Deposits", "money", "Deposited amount", 0.7),
        _column(players, "PlayerID", "int", "Player identifier", 0.9),
        _column(players, "VIPLevel", "varchar", "VIP segment of the player", 0.8),
        _column(players, "RegistrationDate", "date", "Date the player registered", 0.5),
        _column(games, "GameID", "int", "Game identifier", 0.9),
        _column(games, "Provider", "varchar", "Game provider", 0.6),
    ]


def sample_relationships() -> List[JoinEdge]:
    return [
        JoinEdge(
            left_table="tbl_Daily_actions",
            left_column="PlayerID",
            right_table="tbl_Daily_actions_players",
            right_column="PlayerID",
            confidence=0.95,
        ),
        JoinEdge(
            left_table="tbl_Daily_actions_games",
            left_column="GameID",
            right_table="Games",
            right_column="GameID",
            confidence=0.9,
        ),
    ]


@pytest.fixture
def mock_embedder():
    return MockEmbedder(dimension=64)


@pytest.fixture
def bow_embedder():
    return BagOfWordsEmbedder()


@pytest.fixture
def catalog() -> SchemaCatalog:
    columns: Dict[str, List[ColumnMetadata]] = {}
    for c in sample_columns():
        columns.setdefault(c.table_name, []).append(c)
    return SchemaCatalog(
        tables=sample_tables(), columns=columns, relationships=sample_relationships()
    )


@pytest.fixture
def metadata_repository() -> InMemoryMetadataRepository:
    return InMemoryMetadataRepository(sample_tables(), sample_columns(), sample_relationships())


@pytest.fixture
def rule_service() -> InMemoryBusinessRuleService:
    return InMemoryBusinessRuleService(
        rules=[
            BusinessRule(
                rule_key="ggr_definition",
                rule_name="GGR definition",
                rule_content="GGR is total bets minus total wins",
                rule_category="domain",
                priority=1,
            ),
            BusinessRule(
                rule_key="currency",
                rule_name="Currency",
                rule_content="All monetary columns are in GBP",
                rule_category="financial",
                priority=2,
                condition="amount columns are used",
                action="label results in GBP",
            ),
            BusinessRule(
                rule_key="trend_grouping",
                rule_name="Trend grouping",
                rule_content="Group trends by calendar day",
                rule_category="date_handling",
                intent_type="trend",
            ),
        ],
        compliance=[
            ComplianceRule(
                rule_key="uk_self_exclusion",
                rule_name="Self-exclusion",
                rule_content="Exclude self-excluded players from marketing lists",
                compliance_type="responsible_gambling",
                jurisdiction="UK",
            ),
            ComplianceRule(
                rule_key="mt_reporting",
                rule_name="MGA reporting",
                rule_content="Report GGR per licence",
                compliance_type="reporting",
                jurisdiction="MT",
            ),
        ],
        examples=[
            ExampleQuery(
                example_key="ggr_month",
                natural_language_query="What was the total GGR last month?",
                sql_query="SELECT SUM(BetsCasino - WinsCasino) FROM tbl_Daily_actions",
                intent_type=QueryIntent.AGGREGATE,
                complexity=QueryComplexity.MEDIUM,
                is_validated=True,
            ),
            ExampleQuery(
                example_key="unvalidated",
                natural_language_query="Total deposits",
                sql_query="SELECT SUM(Deposits) FROM tbl_Daily_actions",
                intent_type=QueryIntent.AGGREGATE,
                is_validated=False,
            ),
        ],
        domains=[
            BusinessDomain(
                name="Online casino",
                description="Real-money casino and sports betting",
                key_concepts=["GGR", "NGR", "VIP"],
            )
        ],
    )


@pytest.fixture
def template_store() -> InMemoryTemplateStore:
    return InMemoryTemplateStore()


@pytest.fixture
def test_settings() -> Settings:
    return make_settings()

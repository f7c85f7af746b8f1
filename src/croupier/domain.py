"""Static gambling-domain knowledge: term dictionary and intent cues.

This is consumed as data. Deployments with their own glossary pass their
own ``DomainTerm`` list to the extractor and the prompt assembler.
"""

from typing import Dict, List, Tuple

from croupier.types import DomainTerm, EntityType, QueryIntent

_DAILY = "tbl_Daily_actions"
_DAILY_PLAYERS = "tbl_Daily_actions_players"
_DAILY_GAMES = "tbl_Daily_actions_games"
_GAMES = "Games"
_TRANSACTIONS = "tbl_Daily_actionsGBP_transactions"

_BETS = ["BetsCasino", "BetsSport", "BetsLive"]
_WINS = ["WinsCasino", "WinsSport", "WinsLive"]

DEFAULT_DOMAIN_TERMS: List[DomainTerm] = [
    DomainTerm(
        key="ggr",
        canonical="Gross Gaming Revenue",
        entity_type=EntityType.METRIC,
        definition=(
            "Total amount wagered by players minus total winnings paid out, "
            "before bonuses, taxes or other costs"
        ),
        synonyms=["ggr", "gross gaming revenue", "gross revenue", "gaming revenue"],
        related_tables=[_DAILY, _DAILY_PLAYERS],
        related_columns=_BETS + _WINS,
        formula="(BetsCasino + BetsSport + BetsLive) - (WinsCasino + WinsSport + WinsLive)",
    ),
    DomainTerm(
        key="ngr",
        canonical="Net Gaming Revenue",
        entity_type=EntityType.METRIC,
        definition="Gross Gaming Revenue minus bonuses, free bets and other player-favourable adjustments",
        synonyms=["ngr", "net gaming revenue", "net revenue"],
        related_tables=[_DAILY, _DAILY_PLAYERS],
        related_columns=_BETS + _WINS + ["Bonuses"],
        formula="GGR - Bonuses - FreeBets - Adjustments",
    ),
    DomainTerm(
        key="rtp",
        canonical="Return to Player",
        entity_type=EntityType.METRIC,
        definition="Share of wagered money a game pays back to players over extended play",
        synonyms=["rtp", "return to player", "payout percentage", "payout rate"],
        related_tables=[_GAMES, _DAILY_GAMES],
        related_columns=["RTP", "PayoutPercentage", "TheoreticalRTP"],
        formula="(Total Wins / Total Bets) * 100",
    ),
    DomainTerm(
        key="hold",
        canonical="Hold Percentage",
        entity_type=EntityType.METRIC,
        definition="GGR as a share of total bets",
        synonyms=["hold", "hold percentage", "hold rate", "margin"],
        related_tables=[_DAILY, _DAILY_GAMES],
        related_columns=_BETS + _WINS,
        formula="GGR / Total Bets * 100",
    ),
    DomainTerm(
        key="arpu",
        canonical="Average Revenue Per User",
        entity_type=EntityType.METRIC,
        definition="GGR divided by the number of active players",
        synonyms=["arpu", "average revenue per user", "average revenue per player", "arppu"],
        related_tables=[_DAILY, _DAILY_PLAYERS],
        related_columns=_BETS + _WINS + ["PlayerID"],
        formula="GGR / COUNT(DISTINCT PlayerID)",
    ),
    DomainTerm(
        key="ftd",
        canonical="First Time Deposit",
        entity_type=EntityType.METRIC,
        definition="A player's first ever deposit; FTD count measures acquisition",
        synonyms=["ftd", "ftds", "first time deposit", "first deposit"],
        related_tables=[_DAILY_PLAYERS, _TRANSACTIONS],
        related_columns=["FirstDepositDate", "FirstDepositAmount", "PlayerID"],
        formula="COUNT(DISTINCT PlayerID) WHERE FirstDepositDate in range",
    ),
    DomainTerm(
        key="churn",
        canonical="Churn Rate",
        entity_type=EntityType.METRIC,
        definition="Share of previously active players with no activity in the period",
        synonyms=["churn", "churn rate", "churned", "attrition"],
        related_tables=[_DAILY_PLAYERS],
        related_columns=["LastActivityDate", "PlayerID"],
        formula="Inactive players / Active players at period start",
    ),
    DomainTerm(
        key="deposit",
        canonical="Deposit",
        entity_type=EntityType.FINANCIAL,
        definition="Money transferred by a player into their account to fund play",
        synonyms=["deposit", "deposits", "funding", "top-up", "payment in"],
        related_tables=[_DAILY, _DAILY_PLAYERS, _TRANSACTIONS],
        related_columns=["Deposits", "DepositAmount", "FundingAmount"],
        formula="SUM(Deposits)",
    ),
    DomainTerm(
        key="withdrawal",
        canonical="Withdrawal",
        entity_type=EntityType.FINANCIAL,
        definition="Money transferred from a player's account back to their payment method",
        synonyms=["withdrawal", "withdrawals", "cashout", "cash out", "payment out"],
        related_tables=[_DAILY, _DAILY_PLAYERS, _TRANSACTIONS],
        related_columns=["Withdrawals", "WithdrawalAmount", "CashoutAmount"],
        formula="SUM(Withdrawals)",
    ),
    DomainTerm(
        key="bet",
        canonical="Bets",
        entity_type=EntityType.FINANCIAL,
        definition="Amount wagered, split by casino, sport and live",
        synonyms=["bet", "bets", "wager", "wagers", "stake", "stakes", "turnover", "handle"],
        related_tables=[_DAILY, _DAILY_GAMES],
        related_columns=_BETS,
        formula="BetsCasino + BetsSport + BetsLive",
    ),
    DomainTerm(
        key="win",
        canonical="Wins",
        entity_type=EntityType.FINANCIAL,
        definition="Amount paid out to players on winning bets",
        synonyms=["win", "wins", "winnings", "payouts"],
        related_tables=[_DAILY, _DAILY_GAMES],
        related_columns=_WINS,
        formula="WinsCasino + WinsSport + WinsLive",
    ),
    DomainTerm(
        key="bonus",
        canonical="Bonuses",
        entity_type=EntityType.FINANCIAL,
        definition="Promotional credit granted to players",
        synonyms=["bonus", "bonuses", "free bet", "free bets", "free spins", "promotion"],
        related_tables=[_DAILY, _DAILY_PLAYERS],
        related_columns=["Bonuses", "FreeBets"],
        formula="SUM(Bonuses)",
    ),
]

# Players and games are recognised by pattern; these are the tables they point at.
PLAYER_TABLES: List[str] = [_DAILY_PLAYERS, _DAILY]
PLAYER_COLUMNS: List[str] = ["PlayerID", "VIPLevel", "PlayerStatus", "RegistrationDate"]
GAME_TABLES: List[str] = [_GAMES, _DAILY_GAMES]
GAME_COLUMNS: List[str] = ["GameID", "GameName", "GameType", "Provider", "Platform"]


# intent -> (keyword cues, exemplar questions)
INTENT_CUES: Dict[QueryIntent, Tuple[List[str], List[str]]] = {
    QueryIntent.SELECT: (
        ["show", "list", "display", "which", "who"],
        ["show all players registered yesterday", "list the games from netent"],
    ),
    QueryIntent.AGGREGATE: (
        ["total", "sum", "count", "how many", "how much", "average", "avg", "overall"],
        ["what was the total ggr last month", "how many deposits were made this week"],
    ),
    QueryIntent.TREND: (
        ["trend", "over time", "daily", "weekly", "monthly", "growth", "evolution"],
        ["show the daily ggr trend for the last 30 days", "how has deposit volume evolved monthly"],
    ),
    QueryIntent.COMPARISON: (
        ["compare", "comparison", "versus", "vs", "against", "difference between"],
        ["compare casino and sport bets this month", "ggr this month versus last month"],
    ),
    QueryIntent.TOP_N: (
        ["top", "best", "highest", "largest", "most", "bottom", "lowest", "worst"],
        ["top 10 players by deposits", "which games had the highest bets"],
    ),
    QueryIntent.DISTRIBUTION: (
        ["distribution", "breakdown", "split", "share", "by segment", "per"],
        ["breakdown of bets by game type", "distribution of players by vip level"],
    ),
    QueryIntent.CORRELATION: (
        ["correlation", "correlate", "relationship between", "impact of", "affect"],
        ["correlation between bonuses and deposits", "impact of free spins on ggr"],
    ),
    QueryIntent.FORECAST: (
        ["forecast", "predict", "projection", "next month", "next week", "expected"],
        ["forecast ggr for next month", "predict deposits next week"],
    ),
    QueryIntent.ANOMALY: (
        ["anomaly", "anomalies", "unusual", "spike", "outlier", "suspicious", "drop"],
        ["find unusual withdrawal spikes", "any suspicious betting activity yesterday"],
    ),
    QueryIntent.DRILL: (
        ["drill", "detail", "details", "for player", "for game", "transactions of"],
        ["drill into the transactions of player 123", "details for game 456 yesterday"],
    ),
}


def terms_by_key(terms: List[DomainTerm]) -> Dict[str, DomainTerm]:
    return {t.key: t for t in terms}

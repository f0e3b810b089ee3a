"""
Player rankings module.

Turns league game results into per-player skill ratings with:
- Elo over composite teams (roster mean rating)
- Games-played K-factor schedule with a floor
- Capped logarithmic margin-of-victory scaling
- Confidence band that narrows with play and widens with inactivity
- Full rebuild and watermark-based incremental continuation
"""

from leaguerank.rankings.calculator import PlayerRatingState, RatingCalculator
from leaguerank.rankings.constants import DEFAULT_RATING, RatingParams
from leaguerank.rankings.driver import CalculationResult, RankingsJob, resolve_watermark
from leaguerank.rankings.ranks import derive_ranks
from leaguerank.rankings.rounds import (
    GameRecord,
    Round,
    SeasonRecord,
    group_games_into_rounds,
    is_eligible,
    parse_round_key,
    round_key,
)
from leaguerank.rankings.store import RankingsStore, current_rankings, player_history
from leaguerank.rankings.tracker import CalculationTracker, find_stalled_calculations

__all__ = [
    "DEFAULT_RATING",
    "CalculationResult",
    "CalculationTracker",
    "GameRecord",
    "PlayerRatingState",
    "RankingsJob",
    "RankingsStore",
    "RatingCalculator",
    "RatingParams",
    "Round",
    "SeasonRecord",
    "current_rankings",
    "derive_ranks",
    "find_stalled_calculations",
    "group_games_into_rounds",
    "is_eligible",
    "parse_round_key",
    "player_history",
    "resolve_watermark",
    "round_key",
]

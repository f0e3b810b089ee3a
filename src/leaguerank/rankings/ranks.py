"""
Rank derivation.

Rank is the 1-based position of a player when every rated player is sorted
by rating descending, ties broken by player id ascending. The same ordering
is used for the live leaderboard and for every history snapshot, so a
snapshot's ranks can always be re-derived from its ratings.
"""

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from leaguerank.rankings.calculator import PlayerRatingState
from leaguerank.rankings.constants import DEFAULT_RATING


@dataclass(frozen=True)
class RankedPlayer:
    player_id: str
    rank: int
    rating: float

    def to_snapshot_entry(self) -> dict:
        return {"playerId": self.player_id, "rank": self.rank, "rating": self.rating}


def rank_sort_key(player_id: str, rating: float) -> tuple[float, str]:
    return (-rating, player_id)


def derive_ranks(states: Mapping[str, PlayerRatingState] | Iterable[PlayerRatingState]) -> list[RankedPlayer]:
    """Rank all players in a state map (or iterable of states)."""
    values = states.values() if isinstance(states, Mapping) else states
    ordered = sorted(values, key=lambda s: rank_sort_key(s.player_id, s.rating))
    return [
        RankedPlayer(player_id=s.player_id, rank=i, rating=s.rating)
        for i, s in enumerate(ordered, start=1)
    ]


def rank_map(states: Mapping[str, PlayerRatingState]) -> dict[str, int]:
    """player_id -> rank."""
    return {r.player_id: r.rank for r in derive_ranks(states)}


def snapshot_rankings(
    states: Mapping[str, PlayerRatingState],
    previous_states: Optional[Mapping[str, PlayerRatingState]] = None,
    player_names: Optional[Mapping[str, str]] = None,
    default_rating: float = DEFAULT_RATING,
) -> list[dict]:
    """
    Rankings list stored in a history snapshot, ordered by rank.

    Each entry also carries the rating before the round and the change.
    Players missing from `previous_states` start from `default_rating`.
    """
    previous_states = previous_states or {}
    player_names = player_names or {}
    entries = []
    for ranked in derive_ranks(states):
        before = previous_states.get(ranked.player_id)
        previous_rating = before.rating if before is not None else default_rating
        entries.append({
            **ranked.to_snapshot_entry(),
            "playerName": player_names.get(ranked.player_id),
            "previousRating": previous_rating,
            "change": ranked.rating - previous_rating,
            "totalGames": states[ranked.player_id].total_games_counted,
        })
    return entries

"""
Rating calculator for league games between composite teams.

Each game is one Elo match between two composite opponents. A team's
effective rating is the mean rating of its current roster, and every roster
member moves by the same amount:

  Expected score: E = 1 / (1 + 10^((R_opp - R_self) / 400))
  Change:         delta = K * margin * playoff * (actual - E)

Where:
  K       = per-player games-played schedule (see kfactor.py)
  margin  = capped log margin-of-victory multiplier (see margin.py)
  playoff = PLAYOFF_MULTIPLIER for playoff games, else 1.0

A round is applied as a pure fold step. Every game in the round reads the
states as they stood before the round, and the deltas are summed and applied
together, so the order of games inside a round cannot change the outcome.
Ties move no ratings but still advance each participant's last_round_key.
"""

import logging
from dataclasses import dataclass, replace
from typing import Iterable, Mapping, Optional

from leaguerank.rankings.constants import GAME_TYPE_PLAYOFF, RatingParams
from leaguerank.rankings.decay import relax_confidence, shrink_confidence
from leaguerank.rankings.errors import DanglingReferenceError
from leaguerank.rankings.kfactor import calculate_k_factor
from leaguerank.rankings.margin import calculate_margin_multiplier
from leaguerank.rankings.rounds import GameRecord, Round

logger = logging.getLogger(__name__)

# team_id -> player ids on the team's current roster
Rosters = Mapping[str, tuple[str, ...]]


@dataclass(frozen=True)
class PlayerRatingState:
    """
    Rating state of one player.

    Attributes:
        player_id: Player identifier
        rating: Visible skill estimate
        confidence: Uncertainty band in rating points (higher = less certain)
        total_games_counted: Decisive games that moved the rating
        last_round_key: Key of the last round the player took part in
    """
    player_id: str
    rating: float
    confidence: float
    total_games_counted: int = 0
    last_round_key: Optional[str] = None

    def __repr__(self) -> str:
        return (
            f"<PlayerRatingState({self.player_id}: {self.rating:.1f} "
            f"±{self.confidence:.0f}, games={self.total_games_counted})>"
        )


@dataclass
class _GameImpact:
    """Accumulated per-player effect of the games in one round."""
    delta: float = 0.0
    decisive_games: int = 0


class RatingCalculator:
    """
    League rating calculator.

    Usage:
        calc = RatingCalculator()
        states = {}
        previous_key = None
        for rnd in rounds:
            states = calc.apply_round(states, rnd, rosters, previous_key)
            previous_key = rnd.key
    """

    def __init__(self, params: Optional[RatingParams] = None):
        self.params = params or RatingParams()

    def new_player(self, player_id: str) -> PlayerRatingState:
        """State for a player seen for the first time."""
        return PlayerRatingState(
            player_id=player_id,
            rating=self.params.default_rating,
            confidence=self.params.confidence_ceiling,
        )

    def expected_score(self, rating_self: float, rating_opponent: float) -> float:
        """Win probability of `self` against `opponent`."""
        return 1.0 / (1.0 + 10.0 ** ((rating_opponent - rating_self) / self.params.spread))

    def k_factor(self, state: PlayerRatingState) -> float:
        p = self.params
        return calculate_k_factor(
            state.total_games_counted,
            k_base=p.k_base,
            k_floor=p.k_floor,
            k_settle_games=p.k_settle_games,
        )

    def margin_multiplier(self, point_differential: int) -> float:
        return calculate_margin_multiplier(
            point_differential,
            margin_scale=self.params.margin_scale,
            margin_cap=self.params.margin_cap,
        )

    def game_multiplier(self, game: GameRecord) -> float:
        if game.game_type == GAME_TYPE_PLAYOFF:
            return self.params.playoff_multiplier
        return 1.0

    def apply_decay(
        self,
        states: dict[str, PlayerRatingState],
        previous_key: Optional[str],
    ) -> dict[str, PlayerRatingState]:
        """
        Relax confidence for every player who sat out the previous round.

        Players never rated yet (last_round_key None) are left alone.
        """
        p = self.params
        decayed = {}
        for player_id, state in states.items():
            if state.last_round_key is not None and state.last_round_key != previous_key:
                state = replace(
                    state,
                    confidence=relax_confidence(
                        state.confidence, ceiling=p.confidence_ceiling, relax=p.confidence_relax
                    ),
                )
            decayed[player_id] = state
        return decayed

    def apply_round(
        self,
        states: Mapping[str, PlayerRatingState],
        rnd: Round,
        rosters: Rosters,
        previous_key: Optional[str],
    ) -> dict[str, PlayerRatingState]:
        """
        Apply one round and return the new state map.

        The input mapping is not modified.

        Args:
            states: Player states before the round
            rnd: Round to apply
            rosters: Current roster per team id
            previous_key: Key of the round immediately before `rnd` in the
                global order (None for the very first round)

        Raises:
            DanglingReferenceError: If a game names a team absent from rosters
        """
        p = self.params
        working = self.apply_decay(dict(states), previous_key)

        # First sight of a roster member is an initialization event
        participants: list[str] = []
        for game in rnd.games:
            for team_id in (game.home_team_id, game.away_team_id):
                if team_id not in rosters:
                    raise DanglingReferenceError(
                        f"Game {game.id} references team '{team_id}' which does not exist"
                    )
                for player_id in rosters[team_id]:
                    if player_id not in working:
                        working[player_id] = self.new_player(player_id)
                    participants.append(player_id)

        impacts: dict[str, _GameImpact] = {}
        for game in rnd.games:
            home = rosters[game.home_team_id]
            away = rosters[game.away_team_id]
            if not home or not away:
                logger.debug("Game %s skipped: empty roster", game.id)
                continue
            if game.is_tie:
                continue

            home_rating = sum(working[pid].rating for pid in home) / len(home)
            away_rating = sum(working[pid].rating for pid in away) / len(away)
            scale = self.margin_multiplier(game.point_differential) * self.game_multiplier(game)
            home_won = game.home_score > game.away_score

            for roster, own, opp, won in (
                (home, home_rating, away_rating, home_won),
                (away, away_rating, home_rating, not home_won),
            ):
                expected = self.expected_score(own, opp)
                actual = 1.0 if won else 0.0
                for pid in roster:
                    impact = impacts.setdefault(pid, _GameImpact())
                    impact.delta += self.k_factor(working[pid]) * scale * (actual - expected)
                    impact.decisive_games += 1

        for pid in participants:
            state = working[pid]
            impact = impacts.get(pid)
            if impact is None:
                working[pid] = replace(state, last_round_key=rnd.key)
                continue
            confidence = state.confidence
            for _ in range(impact.decisive_games):
                confidence = shrink_confidence(
                    confidence, floor=p.confidence_floor, shrink=p.confidence_shrink
                )
            working[pid] = PlayerRatingState(
                player_id=pid,
                rating=state.rating + impact.delta,
                confidence=confidence,
                total_games_counted=state.total_games_counted + impact.decisive_games,
                last_round_key=rnd.key,
            )
            # participants repeats players who appear in several games
            impacts.pop(pid)

        return working

    def replay(
        self,
        states: Mapping[str, PlayerRatingState],
        rounds: Iterable[Round],
        rosters: Rosters,
        previous_key: Optional[str] = None,
    ) -> dict[str, PlayerRatingState]:
        """Fold a sequence of rounds over a starting state map."""
        current = dict(states)
        for rnd in rounds:
            current = self.apply_round(current, rnd, rosters, previous_key)
            previous_key = rnd.key
        return current

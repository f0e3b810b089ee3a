"""
Unit tests for the rating model.

Tests the core rating logic to ensure:
- Expected scores follow the Elo logistic curve
- K shrinks with games played and never drops below the floor
- Margin multiplier is 1.0 for a one-point win and capped at 1.5
- Confidence narrows with play and relaxes with inactivity
- Ties move no rating but advance the watermark
- A round is a pure fold step (input map untouched, replay splits cleanly)
"""

import math
from datetime import datetime, timedelta

import pytest

from leaguerank.rankings.calculator import PlayerRatingState, RatingCalculator
from leaguerank.rankings.constants import (
    CONFIDENCE_DEFAULTS,
    DEFAULT_RATING,
    K_DEFAULTS,
    MARGIN_DEFAULTS,
    RatingParams,
)
from leaguerank.rankings.decay import relax_confidence, shrink_confidence
from leaguerank.rankings.errors import DanglingReferenceError
from leaguerank.rankings.kfactor import calculate_k_factor
from leaguerank.rankings.margin import calculate_margin_multiplier
from leaguerank.rankings.ranks import derive_ranks, snapshot_rankings
from leaguerank.rankings.rounds import GameRecord, SeasonRecord, group_games_into_rounds

T0 = datetime(2025, 3, 2, 18, 0)
SEASONS = {"s1": SeasonRecord(id="s1", name="Spring", date_start=datetime(2025, 3, 1))}
ROSTERS = {
    "red": ("alice",),
    "blue": ("bob",),
    "green": ("cara", "dan"),
    "gold": ("eve", "finn"),
}


def _rounds(*games):
    return group_games_into_rounds(list(games), SEASONS)


def _game(game_id, home, away, hs, as_, day=0, game_type="regular"):
    return GameRecord(
        id=game_id,
        season_id="s1",
        home_team_id=home,
        away_team_id=away,
        home_score=hs,
        away_score=as_,
        scheduled_at=T0 + timedelta(days=day),
        game_type=game_type,
    )


@pytest.fixture
def calculator():
    return RatingCalculator()


class TestExpectedScore:

    def test_equal_ratings_are_even(self, calculator):
        assert calculator.expected_score(1500.0, 1500.0) == pytest.approx(0.5)

    def test_400_points_is_ten_to_one(self, calculator):
        assert calculator.expected_score(1900.0, 1500.0) == pytest.approx(10 / 11)

    def test_expected_scores_sum_to_one(self, calculator):
        a = calculator.expected_score(1612.5, 1433.0)
        b = calculator.expected_score(1433.0, 1612.5)
        assert a + b == pytest.approx(1.0)


class TestKFactor:

    def test_new_player_gets_base_k(self):
        assert calculate_k_factor(0) == K_DEFAULTS["k_base"]

    def test_k_halves_after_settle_games(self):
        games = int(K_DEFAULTS["k_settle_games"])
        assert calculate_k_factor(games) == pytest.approx(K_DEFAULTS["k_base"] / 2)

    def test_k_is_monotonically_decreasing(self):
        values = [calculate_k_factor(n) for n in range(0, 200)]
        assert all(a >= b for a, b in zip(values, values[1:]))

    def test_k_never_drops_below_floor(self):
        assert calculate_k_factor(10_000) == K_DEFAULTS["k_floor"]

    def test_negative_games_rejected(self):
        with pytest.raises(ValueError):
            calculate_k_factor(-1)


class TestMarginMultiplier:

    def test_one_point_win_is_neutral(self):
        assert calculate_margin_multiplier(1) == 1.0
        assert calculate_margin_multiplier(-1) == 1.0

    def test_bigger_margin_moves_more(self):
        assert calculate_margin_multiplier(2) < calculate_margin_multiplier(6)

    def test_multiplier_is_capped(self):
        cap = MARGIN_DEFAULTS["margin_cap"]
        assert calculate_margin_multiplier(10_000) == cap
        assert cap <= 1.5

    def test_sign_is_ignored(self):
        assert calculate_margin_multiplier(-7) == calculate_margin_multiplier(7)


class TestConfidence:

    def test_shrink_moves_toward_floor(self):
        floor = CONFIDENCE_DEFAULTS["floor"]
        value = CONFIDENCE_DEFAULTS["ceiling"]
        for _ in range(200):
            new = shrink_confidence(value)
            assert floor <= new < value
            value = new

    def test_relax_moves_toward_ceiling(self):
        ceiling = CONFIDENCE_DEFAULTS["ceiling"]
        relaxed = relax_confidence(100.0)
        assert 100.0 < relaxed < ceiling

    def test_relax_at_ceiling_is_stable(self):
        ceiling = CONFIDENCE_DEFAULTS["ceiling"]
        assert relax_confidence(ceiling) == ceiling


class TestApplyRound:

    def test_first_game_scenario(self, calculator):
        """
        Two one-player teams at the default rating; red wins.

        Winner gains exactly what the loser drops and both have one game counted.
        """
        rounds = _rounds(_game("g1", "red", "blue", 10, 7))
        states = calculator.replay({}, rounds, ROSTERS)

        alice, bob = states["alice"], states["bob"]
        assert alice.rating > DEFAULT_RATING > bob.rating
        assert alice.rating - DEFAULT_RATING == pytest.approx(DEFAULT_RATING - bob.rating)
        assert alice.total_games_counted == 1
        assert bob.total_games_counted == 1
        assert alice.last_round_key == rounds[0].key

        # K=36, margin = 1 + 0.2 ln 3, actual - expected = 0.5
        expected_delta = 36 * (1 + 0.2 * math.log(3)) * 0.5
        assert alice.rating == pytest.approx(DEFAULT_RATING + expected_delta)

    def test_tie_moves_nothing_but_advances_watermark(self, calculator):
        rounds = _rounds(_game("g1", "red", "blue", 5, 5))
        states = calculator.replay({}, rounds, ROSTERS)

        for pid in ("alice", "bob"):
            assert states[pid].rating == DEFAULT_RATING
            assert states[pid].total_games_counted == 0
            assert states[pid].confidence == CONFIDENCE_DEFAULTS["ceiling"]
            assert states[pid].last_round_key == rounds[0].key

    def test_composite_team_uses_roster_mean(self, calculator):
        start = {
            "cara": PlayerRatingState("cara", 1700.0, 200.0, 10, None),
            "dan": PlayerRatingState("dan", 1500.0, 200.0, 10, None),
            "eve": PlayerRatingState("eve", 1600.0, 200.0, 10, None),
            "finn": PlayerRatingState("finn", 1600.0, 200.0, 10, None),
        }
        rounds = _rounds(_game("g1", "green", "gold", 3, 2))
        states = calculator.replay(start, rounds, ROSTERS)

        # Teams are even on average, so each green player gains K/2
        k = calculate_k_factor(10)
        assert states["cara"].rating == pytest.approx(1700.0 + k * 0.5)
        assert states["dan"].rating == pytest.approx(1500.0 + k * 0.5)
        assert states["eve"].rating == pytest.approx(1600.0 - k * 0.5)

    def test_upset_moves_more_than_expected_win(self, calculator):
        favourite = {
            "alice": PlayerRatingState("alice", 1700.0, 100.0, 30, None),
            "bob": PlayerRatingState("bob", 1400.0, 100.0, 30, None),
        }
        expected_win = calculator.replay(favourite, _rounds(_game("g1", "red", "blue", 2, 1)), ROSTERS)
        upset = calculator.replay(favourite, _rounds(_game("g1", "red", "blue", 1, 2)), ROSTERS)

        gain_favourite = expected_win["alice"].rating - 1700.0
        gain_underdog = upset["bob"].rating - 1400.0
        assert 0 < gain_favourite < gain_underdog

    def test_playoff_game_weighs_more(self, calculator):
        regular = calculator.replay({}, _rounds(_game("g1", "red", "blue", 2, 1)), ROSTERS)
        playoff = calculator.replay({}, _rounds(_game("g1", "red", "blue", 2, 1, game_type="playoff")), ROSTERS)
        gain_regular = regular["alice"].rating - DEFAULT_RATING
        gain_playoff = playoff["alice"].rating - DEFAULT_RATING
        assert gain_playoff == pytest.approx(gain_regular * RatingParams().playoff_multiplier)

    def test_round_deltas_use_pre_round_ratings(self, calculator):
        """Alice plays twice in one round; both games see her pre-round rating."""
        rosters = {**ROSTERS, "red2": ("alice",), "blue2": ("carl",)}
        rounds = _rounds(
            _game("g1", "red", "blue", 2, 1),
            _game("g2", "red2", "blue2", 2, 1),
        )
        states = calculator.replay({}, rounds, rosters)
        single_gain = calculator.replay({}, _rounds(_game("g1", "red", "blue", 2, 1)), ROSTERS)["alice"].rating - DEFAULT_RATING

        assert states["alice"].rating - DEFAULT_RATING == pytest.approx(2 * single_gain)
        assert states["alice"].total_games_counted == 2

    def test_game_order_inside_round_does_not_matter(self, calculator):
        rosters = {**ROSTERS, "red2": ("alice",), "blue2": ("carl",)}
        rnd = _rounds(_game("g1", "red", "blue", 9, 1), _game("g2", "blue2", "red2", 4, 3))[0]
        reversed_round = type(rnd)(
            key=rnd.key, season_id=rnd.season_id, scheduled_at=rnd.scheduled_at,
            games=tuple(reversed(rnd.games)),
        )
        forward = calculator.apply_round({}, rnd, rosters, None)
        backward = calculator.apply_round({}, reversed_round, rosters, None)
        for pid in forward:
            assert forward[pid].rating == pytest.approx(backward[pid].rating)
            assert forward[pid].total_games_counted == backward[pid].total_games_counted

    def test_input_map_is_not_modified(self, calculator):
        start = {"alice": PlayerRatingState("alice", 1550.0, 300.0, 3, None)}
        snapshot = dict(start)
        calculator.replay(start, _rounds(_game("g1", "red", "blue", 3, 1)), ROSTERS)
        assert start == snapshot

    def test_unknown_team_is_dangling_reference(self, calculator):
        with pytest.raises(DanglingReferenceError, match="ghost"):
            calculator.replay({}, _rounds(_game("g1", "red", "ghost", 3, 1)), ROSTERS)

    def test_empty_roster_game_is_skipped(self, calculator):
        rosters = {**ROSTERS, "empty": ()}
        states = calculator.replay({}, _rounds(_game("g1", "red", "empty", 3, 1)), rosters)
        assert states["alice"].rating == DEFAULT_RATING
        assert states["alice"].last_round_key is not None


class TestDecay:

    def test_player_missing_previous_round_relaxes(self, calculator):
        rounds = _rounds(
            _game("g1", "red", "blue", 3, 1, day=0),
            _game("g2", "green", "gold", 3, 1, day=7),
            _game("g3", "green", "gold", 3, 1, day=14),
        )
        after_first = calculator.replay({}, rounds[:1], ROSTERS)
        states = calculator.replay({}, rounds, ROSTERS)

        # Round 2 follows alice's round, so no decay yet; round 3 relaxes her once
        expected = relax_confidence(after_first["alice"].confidence)
        assert states["alice"].confidence == pytest.approx(expected)
        assert states["alice"].rating == after_first["alice"].rating

    def test_active_player_does_not_relax(self, calculator):
        rounds = _rounds(
            _game("g1", "red", "blue", 3, 1, day=0),
            _game("g2", "red", "blue", 1, 3, day=7),
        )
        states = calculator.replay({}, rounds, ROSTERS)
        ceiling = CONFIDENCE_DEFAULTS["ceiling"]
        expected = shrink_confidence(shrink_confidence(ceiling))
        assert states["alice"].confidence == pytest.approx(expected)


class TestReplaySplit:

    @pytest.fixture
    def season_rounds(self):
        return _rounds(
            _game("g1", "red", "blue", 3, 1, day=0),
            _game("g2", "green", "gold", 10, 2, day=0),
            _game("g3", "red", "green", 4, 4, day=7),
            _game("g4", "gold", "blue", 6, 5, day=14),
            _game("g5", "red", "gold", 1, 8, day=21),
            _game("g6", "blue", "green", 2, 3, day=28, game_type="playoff"),
        )

    def test_replay_split_at_every_point_matches_full_replay(self, calculator, season_rounds):
        full = calculator.replay({}, season_rounds, ROSTERS)
        for k in range(len(season_rounds) + 1):
            head = calculator.replay({}, season_rounds[:k], ROSTERS)
            previous_key = season_rounds[k - 1].key if k else None
            continued = calculator.replay(head, season_rounds[k:], ROSTERS, previous_key)
            assert continued == full, f"split at k={k} diverged"


class TestRanks:

    def test_sorted_by_rating_then_player_id(self):
        states = {
            "b": PlayerRatingState("b", 1600.0, 100.0),
            "a": PlayerRatingState("a", 1600.0, 100.0),
            "c": PlayerRatingState("c", 1700.0, 100.0),
            "d": PlayerRatingState("d", 1400.0, 100.0),
        }
        ranked = derive_ranks(states)
        assert [(r.player_id, r.rank) for r in ranked] == [("c", 1), ("a", 2), ("b", 3), ("d", 4)]

    def test_snapshot_ranks_rederive_from_ratings(self, calculator):
        rounds = _rounds(
            _game("g1", "red", "blue", 3, 1),
            _game("g2", "green", "gold", 2, 9),
        )
        entries = snapshot_rankings(calculator.replay({}, rounds, ROSTERS))
        resorted = sorted(entries, key=lambda e: (-e["rating"], e["playerId"]))
        assert [e["rank"] for e in resorted] == list(range(1, len(entries) + 1))
        assert entries == resorted

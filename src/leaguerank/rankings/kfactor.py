"""
Games-played K-factor schedule.

New players need their ratings to converge quickly, so K starts high and
shrinks as a player accumulates decisive games:

    K = max(k_floor, k_base * S / (S + games_counted))

where S is k_settle_games. K halves after S games and never drops below the
floor, so late-season results still move established players.
"""

from leaguerank.rankings.constants import K_DEFAULTS


def calculate_k_factor(
    games_counted: int,
    k_base: float | None = None,
    k_floor: float | None = None,
    k_settle_games: float | None = None,
) -> float:
    """
    K-factor for a player with the given number of counted games.

    Examples:
        calculate_k_factor(0)    # -> 36.0
        calculate_k_factor(20)   # -> 18.0
        calculate_k_factor(500)  # -> 12.0 (floor)
    """
    if k_base is None:
        k_base = K_DEFAULTS["k_base"]
    if k_floor is None:
        k_floor = K_DEFAULTS["k_floor"]
    if k_settle_games is None:
        k_settle_games = K_DEFAULTS["k_settle_games"]

    if games_counted < 0:
        raise ValueError(f"games_counted must be >= 0, got {games_counted}")

    k = k_base * k_settle_games / (k_settle_games + games_counted)
    return max(k_floor, k)

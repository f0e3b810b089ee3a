"""
Rating model constants.

The model is a standard Elo over composite teams. A game is treated as one
match between two opponents whose ratings are the roster means, and every
roster member moves by the same amount.

K factor: Controls rating volatility (how much ratings change per game)
  - Starts at K_BASE for a brand-new player
  - Shrinks as K_BASE * S / (S + games) where S = K_SETTLE_GAMES
  - Never drops below K_FLOOR, so late-season results still count

Spread: 400 rating points of difference means 10:1 expected odds.

Confidence: An uncertainty band in rating points reported next to the rating.
It narrows toward CONFIDENCE_FLOOR with every decisive game and relaxes back
toward CONFIDENCE_CEILING while a player sits out rounds. It never feeds
back into K.
"""

from dataclasses import asdict, dataclass


# Default starting rating for new players
DEFAULT_RATING = 1500.0

# Logistic spread of the expected-score curve
RATING_SPREAD = 400.0

# K-factor schedule
# k_base: K for a player with zero counted games
# k_floor: lower bound on K for established players
# k_settle_games: games after which K has halved
K_DEFAULTS = {
    "k_base": 36.0,
    "k_floor": 12.0,
    "k_settle_games": 20.0,
}

# Margin-of-victory scaling
# multiplier = 1 + margin_scale * ln(point_differential), capped at margin_cap
# A one-point win gives exactly 1.0
MARGIN_DEFAULTS = {
    "margin_scale": 0.2,
    "margin_cap": 1.5,
}

# Confidence band
# shrink: fraction of the gap to the floor kept after each decisive game
# relax: fraction of the gap to the ceiling kept after each missed round
CONFIDENCE_DEFAULTS = {
    "ceiling": 350.0,
    "floor": 60.0,
    "shrink": 0.92,
    "relax": 0.97,
}

# Playoff games weigh more than regular-season games
PLAYOFF_MULTIPLIER = 1.8

GAME_TYPE_PLAYOFF = "playoff"


@dataclass(frozen=True)
class RatingParams:
    """
    Tunable parameters of the rating model.

    Defaults come from the module-level constants. A run records the params
    it used on its calculation record so results can be audited later.
    """
    default_rating: float = DEFAULT_RATING
    spread: float = RATING_SPREAD
    k_base: float = K_DEFAULTS["k_base"]
    k_floor: float = K_DEFAULTS["k_floor"]
    k_settle_games: float = K_DEFAULTS["k_settle_games"]
    margin_scale: float = MARGIN_DEFAULTS["margin_scale"]
    margin_cap: float = MARGIN_DEFAULTS["margin_cap"]
    confidence_ceiling: float = CONFIDENCE_DEFAULTS["ceiling"]
    confidence_floor: float = CONFIDENCE_DEFAULTS["floor"]
    confidence_shrink: float = CONFIDENCE_DEFAULTS["shrink"]
    confidence_relax: float = CONFIDENCE_DEFAULTS["relax"]
    playoff_multiplier: float = PLAYOFF_MULTIPLIER

    def to_dict(self) -> dict:
        return asdict(self)

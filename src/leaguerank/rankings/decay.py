"""
Confidence band updates.

Confidence is reported alongside the rating as a plausible-error band. It
moves exponentially between two bounds:

- Each decisive game keeps `shrink` of the gap to the floor:
      new = floor + (current - floor) * shrink
- Each round a rated player sits out keeps `relax` of the gap to the ceiling:
      new = ceiling - (ceiling - current) * relax

Neither update touches the rating, and confidence never feeds into K.
"""

from leaguerank.rankings.constants import CONFIDENCE_DEFAULTS


def shrink_confidence(
    current: float,
    floor: float | None = None,
    shrink: float | None = None,
) -> float:
    """Narrow the band after one decisive game."""
    if floor is None:
        floor = CONFIDENCE_DEFAULTS["floor"]
    if shrink is None:
        shrink = CONFIDENCE_DEFAULTS["shrink"]
    return floor + (current - floor) * shrink


def relax_confidence(
    current: float,
    ceiling: float | None = None,
    relax: float | None = None,
) -> float:
    """Widen the band for one round of inactivity."""
    if ceiling is None:
        ceiling = CONFIDENCE_DEFAULTS["ceiling"]
    if relax is None:
        relax = CONFIDENCE_DEFAULTS["relax"]
    return ceiling - (ceiling - current) * relax

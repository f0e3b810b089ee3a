"""
Margin of victory scaling for the K-factor.

In plain Elo a one-point win and a twenty-point blowout produce the same
rating change. This module scales K by how decisive the result was:

    multiplier = min(margin_cap, 1 + margin_scale * ln(|point_differential|))

A one-point win gives exactly 1.0. Large margins grow logarithmically so a
runaway score cannot dominate, and the cap keeps the multiplier at or below
about 1.5x.
"""

import math

from leaguerank.rankings.constants import MARGIN_DEFAULTS


def calculate_margin_multiplier(
    point_differential: int,
    margin_scale: float | None = None,
    margin_cap: float | None = None,
) -> float:
    """
    K multiplier for a decisive result.

    Args:
        point_differential: Winner's score minus loser's score (sign ignored)
        margin_scale: Growth rate of the log curve (default from constants)
        margin_cap: Upper bound on the multiplier (default from constants)

    Returns:
        Multiplier in [1.0, margin_cap]. A tie (0) returns 1.0; ties are
        excluded from rating impact before this is ever called.
    """
    if margin_scale is None:
        margin_scale = MARGIN_DEFAULTS["margin_scale"]
    if margin_cap is None:
        margin_cap = MARGIN_DEFAULTS["margin_cap"]

    diff = abs(point_differential)
    if diff <= 1:
        return 1.0

    return min(margin_cap, 1.0 + margin_scale * math.log(diff))

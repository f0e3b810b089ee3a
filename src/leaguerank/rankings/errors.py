"""
Exception hierarchy for the rankings engine.

Input corruption errors are fatal: the run is marked failed and is not
retried automatically. An operator fixes the data and triggers a new run.
"""

from leaguerank.tasks.locks import LockNotAcquiredError

__all__ = [
    "CalculationNotFoundError",
    "CalculationStateImmutableError",
    "DanglingReferenceError",
    "InputCorruptionError",
    "LockNotAcquiredError",
    "MalformedRoundKeyError",
    "ProcessedRoundsChangedError",
    "RankingsError",
    "SeasonNotFoundError",
    "UnknownWatermarkError",
]


class RankingsError(Exception):
    """Base class for all rankings engine errors."""


class InputCorruptionError(RankingsError):
    """The league data cannot be replayed as-is."""


class DanglingReferenceError(InputCorruptionError):
    """A game names a season or team that does not exist."""


class MalformedRoundKeyError(InputCorruptionError):
    """A stored round key does not have the form '{epochMillis}_{seasonId}'."""


class UnknownWatermarkError(InputCorruptionError):
    """The stored watermark names a round that is absent from the league data."""

    def __init__(self, round_key: str):
        self.round_key = round_key
        super().__init__(
            f"Watermark round '{round_key}' does not exist in the current game data. "
            f"Games were probably edited or deleted; run a full rebuild."
        )


class ProcessedRoundsChangedError(InputCorruptionError):
    """Games in rounds at or before the watermark changed after they were replayed."""

    def __init__(self, round_key: str):
        self.round_key = round_key
        super().__init__(
            f"Games at or before watermark round '{round_key}' were added or edited after "
            f"they were processed. An incremental run cannot apply them; run a full rebuild."
        )


class CalculationNotFoundError(RankingsError):
    """No calculation record exists with the given id."""


class SeasonNotFoundError(RankingsError):
    """No season exists with the given id."""


class CalculationStateImmutableError(RankingsError):
    """A completed or failed calculation record cannot be changed."""

"""Task runtime utilities for the rankings job."""

from leaguerank.tasks.checkpoints import RANKINGS_WATERMARK_KEY, DBCheckpointStore
from leaguerank.tasks.locks import (
    LockNotAcquiredError,
    RANKINGS_LOCK_NAME,
    calculation_lock,
    current_lock_holder,
    release_lock,
    try_acquire_lock,
)

__all__ = [
    "DBCheckpointStore",
    "LockNotAcquiredError",
    "RANKINGS_LOCK_NAME",
    "RANKINGS_WATERMARK_KEY",
    "calculation_lock",
    "current_lock_holder",
    "release_lock",
    "try_acquire_lock",
]

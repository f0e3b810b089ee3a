"""Checkpoint persistence helpers for resumable jobs."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from leaguerank.db.models import PipelineCheckpoint

# Last round key committed together with the current rankings
RANKINGS_WATERMARK_KEY = "rankings.watermark"


class DBCheckpointStore:
    """
    Key/value checkpoint store backed by the database.

    Writes join the caller's session and only flush, so a checkpoint commits
    or rolls back together with the data it describes.
    """

    def __init__(self, session: Session):
        self.session = session

    def get(self, key: str) -> dict[str, Any] | None:
        row = self.session.get(PipelineCheckpoint, key)
        if row is None:
            return None
        return row.value_json

    def set(self, key: str, value: dict[str, Any]) -> bool:
        """
        Store a checkpoint value.

        Returns:
            True if a row was inserted or changed, False if it already held
            this value.
        """
        row = self.session.get(PipelineCheckpoint, key)
        if row is None:
            self.session.add(PipelineCheckpoint(
                key=key,
                value_json=value,
                updated_at=datetime.utcnow(),
            ))
        elif row.value_json == value:
            return False
        else:
            row.value_json = value
            row.updated_at = datetime.utcnow()

        self.session.flush()
        return True

    def delete(self, key: str) -> bool:
        row = self.session.get(PipelineCheckpoint, key)
        if row is None:
            return False
        self.session.delete(row)
        self.session.flush()
        return True

    def get_watermark(self) -> str | None:
        """Round key of the last persisted rankings, if any."""
        value = self.get(RANKINGS_WATERMARK_KEY)
        if not value:
            return None
        return value.get("roundKey")

    def get_rounds_digest(self) -> str | None:
        """Fingerprint of every round up to and including the watermark."""
        value = self.get(RANKINGS_WATERMARK_KEY)
        if not value:
            return None
        return value.get("roundsDigest")

    def set_watermark(
        self,
        round_key: str | None,
        calculation_id: str | None = None,
        rounds_digest: str | None = None,
    ) -> bool:
        if round_key is None:
            return self.delete(RANKINGS_WATERMARK_KEY)
        current = self.get(RANKINGS_WATERMARK_KEY)
        if (
            current
            and current.get("roundKey") == round_key
            and current.get("roundsDigest") == rounds_digest
        ):
            return False
        return self.set(
            RANKINGS_WATERMARK_KEY,
            {"roundKey": round_key, "calculationId": calculation_id, "roundsDigest": rounds_digest},
        )

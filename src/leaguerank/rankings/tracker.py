"""
Calculation state tracking.

One rankings_calculations row exists per job invocation. The tracker is the
only writer of its status, progress and error fields.

Lifecycle:
    pending -> running -> completed
                       -> failed
    pending -> failed            (e.g. the lock was held)

Each write opens its own short session and commits immediately. Progress and
failure records therefore survive a rollback of the job's own transaction,
and a poller sees them as soon as they are written.
"""

from __future__ import annotations

import logging
import traceback
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from leaguerank.db.models import RankingCalculation
from leaguerank.rankings.errors import CalculationNotFoundError, CalculationStateImmutableError

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_FAILED)

MODE_FULL = "full"
MODE_INCREMENTAL = "incremental"

_UPDATABLE_FIELDS = {"status", "progress", "error", "completed_at", "parameters"}


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


@dataclass
class CalculationStateView:
    """Read-only view of a calculation record, detached from any session."""
    id: str
    mode: str
    status: str
    triggered_by: str
    started_at: datetime
    completed_at: Optional[datetime]
    progress: dict[str, Any] = field(default_factory=dict)
    error: Optional[dict[str, Any]] = None
    parameters: Optional[dict[str, Any]] = None

    @classmethod
    def from_row(cls, row: RankingCalculation) -> "CalculationStateView":
        return cls(
            id=row.id,
            mode=row.mode,
            status=row.status,
            triggered_by=row.triggered_by,
            started_at=row.started_at,
            completed_at=row.completed_at,
            progress=dict(row.progress or {}),
            error=dict(row.error) if row.error else None,
            parameters=dict(row.parameters) if row.parameters else None,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "mode": self.mode,
            "status": self.status,
            "triggeredBy": self.triggered_by,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "progress": self.progress,
            "error": self.error,
            "parameters": self.parameters,
        }


class CalculationTracker:
    """
    Writes and reads rankings_calculations rows.

    Usage:
        tracker = CalculationTracker(get_session_factory())
        calc_id = tracker.create("full", triggered_by="admin")
        tracker.mark_running(calc_id)
        tracker.update_progress(calc_id, current_step="Replaying rounds", percent_complete=40)
        tracker.mark_completed(calc_id)
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def create(
        self,
        mode: str,
        triggered_by: str,
        parameters: Optional[dict[str, Any]] = None,
        calculation_id: Optional[str] = None,
    ) -> str:
        """Create a pending calculation record and return its id."""
        if mode not in (MODE_FULL, MODE_INCREMENTAL):
            raise ValueError(f"mode must be '{MODE_FULL}' or '{MODE_INCREMENTAL}', got '{mode}'")

        calc_id = calculation_id or uuid.uuid4().hex
        with self.session_factory() as session:
            session.add(RankingCalculation(
                id=calc_id,
                mode=mode,
                status=STATUS_PENDING,
                triggered_by=triggered_by,
                started_at=datetime.utcnow(),
                progress={"currentStep": "Initializing", "percentComplete": 0},
                parameters=parameters,
            ))
            session.commit()

        logger.info("Created %s rankings calculation %s (triggered by %s)", mode, calc_id, triggered_by)
        return calc_id

    def _load_mutable(self, session: Session, calc_id: str) -> RankingCalculation:
        row = session.get(RankingCalculation, calc_id)
        if row is None:
            raise CalculationNotFoundError(f"Rankings calculation {calc_id} not found")
        if row.status in TERMINAL_STATUSES:
            raise CalculationStateImmutableError(
                f"Rankings calculation {calc_id} is {row.status} and can no longer change"
            )
        return row

    def update(self, calc_id: str, **fields: Any) -> None:
        """
        Apply a partial update.

        Raises:
            CalculationNotFoundError: No such calculation
            CalculationStateImmutableError: The calculation already finished
            ValueError: An unknown field was passed
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update calculation fields: {sorted(unknown)}")

        with self.session_factory() as session:
            row = self._load_mutable(session, calc_id)
            for name, value in fields.items():
                setattr(row, name, value)
            session.commit()

    def update_progress(
        self,
        calc_id: str,
        current_step: Optional[str] = None,
        percent_complete: Optional[float] = None,
        **extra: Any,
    ) -> dict[str, Any]:
        """
        Merge fields into the progress document.

        Keyword names are stored camelCased (rounds_processed -> roundsProcessed).
        """
        with self.session_factory() as session:
            row = self._load_mutable(session, calc_id)
            progress = dict(row.progress or {})
            if current_step is not None:
                progress["currentStep"] = current_step
            if percent_complete is not None:
                progress["percentComplete"] = round(float(percent_complete), 1)
            for name, value in extra.items():
                progress[_camel(name)] = value
            row.progress = progress
            session.commit()
        return progress

    def mark_running(self, calc_id: str) -> None:
        self.update(calc_id, status=STATUS_RUNNING)

    def mark_completed(self, calc_id: str, **progress_fields: Any) -> None:
        with self.session_factory() as session:
            row = self._load_mutable(session, calc_id)
            progress = dict(row.progress or {})
            progress.update({_camel(k): v for k, v in progress_fields.items()})
            progress["currentStep"] = "Completed"
            progress["percentComplete"] = 100
            row.progress = progress
            row.status = STATUS_COMPLETED
            row.completed_at = datetime.utcnow()
            session.commit()

    def mark_failed(self, calc_id: str, exc: BaseException) -> dict[str, Any]:
        """Record a failure with the exception's message and stack."""
        error = {
            "message": str(exc) or type(exc).__name__,
            "type": type(exc).__name__,
            "stack": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
            "timestamp": datetime.utcnow().isoformat(),
        }
        with self.session_factory() as session:
            row = self._load_mutable(session, calc_id)
            progress = dict(row.progress or {})
            progress["currentStep"] = "Failed"
            row.progress = progress
            row.status = STATUS_FAILED
            row.error = error
            row.completed_at = datetime.utcnow()
            session.commit()
        return error

    def get(self, calc_id: str) -> CalculationStateView:
        with self.session_factory() as session:
            row = session.get(RankingCalculation, calc_id)
            if row is None:
                raise CalculationNotFoundError(f"Rankings calculation {calc_id} not found")
            return CalculationStateView.from_row(row)

    def list_recent(self, limit: int = 20) -> list[CalculationStateView]:
        with self.session_factory() as session:
            rows = session.scalars(
                select(RankingCalculation)
                .order_by(RankingCalculation.started_at.desc())
                .limit(limit)
            )
            return [CalculationStateView.from_row(row) for row in rows]


def find_stalled_calculations(session: Session, older_than: timedelta) -> list[RankingCalculation]:
    """
    Calculations still 'running' after `older_than`.

    A run killed by the platform's execution timeout never records its own
    failure. Operators treat these rows as failed and re-run.
    """
    cutoff = datetime.utcnow() - older_than
    return list(session.scalars(
        select(RankingCalculation)
        .where(
            RankingCalculation.status.in_((STATUS_PENDING, STATUS_RUNNING)),
            RankingCalculation.started_at < cutoff,
        )
        .order_by(RankingCalculation.started_at)
    ))

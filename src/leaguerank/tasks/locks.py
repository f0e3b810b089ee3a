"""Database lock helpers for single-run orchestration safety."""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Generator

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from leaguerank.db.models import CalculationLock

logger = logging.getLogger(__name__)

RANKINGS_LOCK_NAME = "rankings.active_calculation"


class LockNotAcquiredError(TimeoutError):
    """Another calculation holds the lock."""

    def __init__(self, name: str, holder: str | None):
        self.name = name
        self.holder = holder
        super().__init__(
            f"Rankings calculation lock '{name}' is held by calculation {holder}; "
            f"wait for it to finish or for the lock to expire"
        )


def _ensure_lock_row(session_factory: sessionmaker, name: str) -> None:
    with session_factory() as session:
        if session.get(CalculationLock, name) is not None:
            return
        session.add(CalculationLock(name=name, locked=False))
        try:
            session.commit()
        except IntegrityError:
            # Created concurrently by another process
            session.rollback()


def try_acquire_lock(
    session_factory: sessionmaker,
    *,
    name: str,
    holder: str,
    ttl_seconds: float,
) -> bool:
    """
    Attempt a single compare-and-set acquisition of a named lock.

    The UPDATE only matches when the lock is free or its previous holder's
    lease has expired, so at most one caller sees rowcount == 1.
    """
    _ensure_lock_row(session_factory, name)
    now = datetime.utcnow()
    with session_factory() as session:
        result = session.execute(
            update(CalculationLock)
            .where(
                CalculationLock.name == name,
                or_(
                    CalculationLock.locked.is_(False),
                    CalculationLock.expires_at < now,
                ),
            )
            .values(
                locked=True,
                holder=holder,
                acquired_at=now,
                expires_at=now + timedelta(seconds=ttl_seconds),
            )
            .execution_options(synchronize_session=False)
        )
        session.commit()
        return result.rowcount == 1


def release_lock(session_factory: sessionmaker, *, name: str, holder: str) -> bool:
    """Release a lock if `holder` still owns it. Returns True if released."""
    with session_factory() as session:
        result = session.execute(
            update(CalculationLock)
            .where(CalculationLock.name == name, CalculationLock.holder == holder)
            .values(locked=False, holder=None, acquired_at=None, expires_at=None)
            .execution_options(synchronize_session=False)
        )
        session.commit()
        return result.rowcount == 1


def current_lock_holder(session_factory: sessionmaker, name: str) -> str | None:
    with session_factory() as session:
        row = session.get(CalculationLock, name)
        if row is None or not row.locked:
            return None
        return row.holder


@contextmanager
def calculation_lock(
    session_factory: sessionmaker,
    *,
    holder: str,
    name: str = RANKINGS_LOCK_NAME,
    ttl_seconds: float = 900.0,
    timeout_seconds: float = 0.0,
    poll_interval_seconds: float = 1.0,
) -> Generator[bool, None, None]:
    """
    Hold the named lock for the life of this context.

    An expired lease can be taken over, so a run killed by a platform timeout
    blocks others for at most ttl_seconds.

    Yields:
        True if lock acquired.

    Raises:
        LockNotAcquiredError: if lock cannot be acquired before timeout.
    """
    acquired = False
    try:
        deadline = time.monotonic() + max(timeout_seconds, 0.0)
        while True:
            acquired = try_acquire_lock(
                session_factory, name=name, holder=holder, ttl_seconds=ttl_seconds
            )
            if acquired:
                break
            if timeout_seconds <= 0:
                break
            if time.monotonic() >= deadline:
                break
            time.sleep(max(poll_interval_seconds, 0.05))

        if not acquired:
            raise LockNotAcquiredError(name, current_lock_holder(session_factory, name))

        logger.debug("Lock '%s' acquired by %s", name, holder)
        yield True
    finally:
        if acquired:
            # Lease expiry frees the lock if the release fails
            try:
                if not release_lock(session_factory, name=name, holder=holder):
                    logger.warning("Lock '%s' was no longer held by %s at release", name, holder)
            except SQLAlchemyError:
                logger.exception("Could not release lock '%s' held by %s; it expires with its lease", name, holder)

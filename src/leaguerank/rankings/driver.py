"""
Rankings job driver.

Orchestrates one rankings calculation:

    Loading -> Grouping -> Replaying -> Persisting -> Done

Two entry modes:

- Full rebuild: start from an empty rating map and replay every round.
- Incremental: load the stored rankings, find the watermark (the latest round
  already reflected in the store) and replay only the rounds after it. With
  no watermark it behaves exactly like a full rebuild.

Because the rating model is a pure fold over rounds, an incremental run after
a full rebuild of rounds [1..k] ends in the same state as a full rebuild of
[1..N]. Ratings are stored unrounded so the equality is exact.

The watermark is stored with a fingerprint of every round up to it. If a game
is later added to, or edited in, one of those rounds, an incremental run
refuses to continue and a full rebuild is needed.

Nothing is written to the rankings tables until the replay has finished, so a
failed run leaves the store as it was. The whole run holds the
active-calculation lock.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Literal, Optional

from sqlalchemy.orm import sessionmaker

from leaguerank.config import Settings, get_settings
from leaguerank.rankings.calculator import PlayerRatingState, RatingCalculator
from leaguerank.rankings.constants import RatingParams
from leaguerank.rankings.errors import ProcessedRoundsChangedError, UnknownWatermarkError
from leaguerank.rankings.loader import LeagueData, load_league_data, load_rating_states
from leaguerank.rankings.rounds import (
    Round,
    format_round_info,
    group_games_into_rounds,
    parse_round_key,
    rounds_digest,
)
from leaguerank.rankings.store import HistorySnapshot, RankingsStore, build_snapshot
from leaguerank.rankings.tracker import MODE_FULL, MODE_INCREMENTAL, CalculationTracker
from leaguerank.tasks.checkpoints import DBCheckpointStore
from leaguerank.tasks.locks import RANKINGS_LOCK_NAME, calculation_lock

logger = logging.getLogger(__name__)

CalculationStatus = Literal["completed", "failed"]

# Share of percentComplete reached at the end of each phase
_PCT_LOADED = 5
_PCT_GROUPED = 10
_PCT_REPLAYED = 90
_PCT_RANKINGS_SAVED = 95


@dataclass
class CalculationResult:
    """Outcome of one RankingsJob run."""

    calculation_id: str
    mode: str
    status: CalculationStatus
    started_at: datetime
    ended_at: datetime
    metrics: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @property
    def duration_s(self) -> float:
        return (self.ended_at - self.started_at).total_seconds()

    @property
    def ok(self) -> bool:
        return self.status == "completed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "calculation_id": self.calculation_id,
            "mode": self.mode,
            "status": self.status,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat(),
            "duration_s": self.duration_s,
            "metrics": self.metrics,
            "error": self.error,
        }


def resolve_watermark(
    rounds: list[Round],
    states: dict[str, PlayerRatingState],
    checkpoint_key: Optional[str],
) -> Optional[int]:
    """
    Position in `rounds` of the latest round already reflected in the store.

    Candidates are the stored checkpoint and every player's last_round_key.
    The latest by replay position wins.

    Returns:
        Index into `rounds`, or None when nothing has been processed yet

    Raises:
        MalformedRoundKeyError: A stored key cannot be decoded
        UnknownWatermarkError: A stored key names a round absent from the data
    """
    positions = {rnd.key: i for i, rnd in enumerate(rounds)}
    candidates = {s.last_round_key for s in states.values() if s.last_round_key is not None}
    if checkpoint_key is not None:
        candidates.add(checkpoint_key)

    latest = None
    for key in sorted(candidates):
        parse_round_key(key)
        if key not in positions:
            raise UnknownWatermarkError(key)
        if latest is None or positions[key] > latest:
            latest = positions[key]
    return latest


def verify_processed_rounds(
    rounds: list[Round],
    checkpoint_key: Optional[str],
    checkpoint_digest: Optional[str],
) -> None:
    """
    Check that the rounds up to the checkpoint still hold the games replayed.

    A game entered late into a slot at or before the watermark, or a score
    edited after it was replayed, changes the fingerprint. An incremental run
    would never apply such a change.

    Raises:
        ProcessedRoundsChangedError: The fingerprint no longer matches
    """
    if checkpoint_key is None or checkpoint_digest is None:
        return
    positions = {rnd.key: i for i, rnd in enumerate(rounds)}
    if checkpoint_key not in positions:
        raise UnknownWatermarkError(checkpoint_key)
    if rounds_digest(rounds[:positions[checkpoint_key] + 1]) != checkpoint_digest:
        raise ProcessedRoundsChangedError(checkpoint_key)


class RankingsJob:
    """
    Runs full and incremental rankings calculations.

    Usage:
        job = RankingsJob(get_session_factory())
        result = job.run_incremental(triggered_by="cron")
        if not result.ok:
            print(result.error)

    Every exception inside a run is caught: the calculation record is marked
    failed and a CalculationResult with status "failed" is returned.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        params: Optional[RatingParams] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.calculator = RatingCalculator(params)
        self.tracker = CalculationTracker(session_factory)
        self.store = RankingsStore(session_factory, batch_size=self.settings.rankings_write_batch_size)
        self.clock = clock

    @property
    def params(self) -> RatingParams:
        return self.calculator.params

    def run_full(
        self,
        triggered_by: str,
        calculation_id: Optional[str] = None,
        persist: bool = True,
    ) -> CalculationResult:
        """Recompute every rating from the first round."""
        return self._run(MODE_FULL, triggered_by, calculation_id, persist)

    def run_incremental(
        self,
        triggered_by: str,
        calculation_id: Optional[str] = None,
        persist: bool = True,
    ) -> CalculationResult:
        """Continue from the stored rankings with the rounds after the watermark."""
        return self._run(MODE_INCREMENTAL, triggered_by, calculation_id, persist)

    def create_calculation(self, mode: str, triggered_by: str) -> str:
        """Create the pending record up front so callers can poll it."""
        return self.tracker.create(mode, triggered_by, parameters=self.params.to_dict())

    def _run(
        self,
        mode: str,
        triggered_by: str,
        calculation_id: Optional[str],
        persist: bool,
    ) -> CalculationResult:
        started_at = datetime.utcnow()
        calc_id = calculation_id or self.create_calculation(mode, triggered_by)
        logger.info("Starting %s rankings calculation %s", mode, calc_id)

        try:
            with calculation_lock(
                self.session_factory,
                holder=calc_id,
                name=RANKINGS_LOCK_NAME,
                ttl_seconds=self.settings.rankings_lock_ttl_seconds,
                timeout_seconds=self.settings.rankings_lock_timeout_seconds,
            ):
                self.tracker.mark_running(calc_id)
                metrics = self._execute(calc_id, mode, persist)
                self.tracker.mark_completed(
                    calc_id,
                    rounds_processed=metrics["rounds_processed"],
                    rounds_remaining=metrics["rounds_remaining"],
                )
        except Exception as exc:
            logger.exception("Rankings calculation %s failed", calc_id)
            try:
                self.tracker.mark_failed(calc_id, exc)
            except Exception:
                logger.exception("Could not record failure of calculation %s", calc_id)
            return CalculationResult(
                calculation_id=calc_id,
                mode=mode,
                status="failed",
                started_at=started_at,
                ended_at=datetime.utcnow(),
                error=str(exc) or type(exc).__name__,
            )

        result = CalculationResult(
            calculation_id=calc_id,
            mode=mode,
            status="completed",
            started_at=started_at,
            ended_at=datetime.utcnow(),
            metrics=metrics,
        )
        logger.info(
            "Rankings calculation %s completed in %.1fs: %d rounds processed, %d remaining",
            calc_id, result.duration_s, metrics["rounds_processed"], metrics["rounds_remaining"],
        )
        return result

    def _execute(self, calc_id: str, mode: str, persist: bool) -> dict[str, Any]:
        # --- Loading ---
        self.tracker.update_progress(calc_id, current_step="Loading games", percent_complete=0)
        with self.session_factory() as session:
            data = load_league_data(session)
            stored = load_rating_states(session) if mode == MODE_INCREMENTAL else {}
            checkpoint = checkpoint_digest = None
            if mode == MODE_INCREMENTAL:
                checkpoints = DBCheckpointStore(session)
                checkpoint = checkpoints.get_watermark()
                checkpoint_digest = checkpoints.get_rounds_digest()

        # --- Grouping ---
        self.tracker.update_progress(calc_id, current_step="Grouping games into rounds", percent_complete=_PCT_LOADED)
        rounds = group_games_into_rounds(data.games, data.seasons)
        total_games = sum(len(r.games) for r in rounds)

        replace_all = mode == MODE_FULL
        states: dict[str, PlayerRatingState] = {}
        previous_key: Optional[str] = None
        start = 0

        if mode == MODE_INCREMENTAL:
            position = resolve_watermark(rounds, stored, checkpoint)
            verify_processed_rounds(rounds, checkpoint, checkpoint_digest)
            if position is None:
                logger.info("No watermark found; incremental run falls back to a full rebuild")
                replace_all = True
            else:
                states = stored
                previous_key = rounds[position].key
                start = position + 1
                logger.info("Watermark at %s; %d rounds to replay", previous_key, len(rounds) - start)

        pending = rounds[start:]
        self.tracker.update_progress(
            calc_id,
            current_step="Replaying rounds",
            percent_complete=_PCT_GROUPED,
            total_seasons=len({r.season_id for r in rounds}),
            total_games=total_games,
            total_rounds=len(rounds),
            rounds_to_process=len(pending),
            rounds_processed=0,
            watermark=previous_key,
        )

        # --- Replaying ---
        states, snapshots, processed = self._replay(calc_id, states, pending, previous_key, data)
        watermark = pending[processed - 1].key if processed else previous_key
        digest = rounds_digest(rounds[:start + processed]) if watermark is not None else None
        remaining = len(pending) - processed
        if remaining:
            logger.warning(
                "Time budget of %.0fs used up; stopping after %d of %d rounds (continue with an incremental run)",
                self.settings.rankings_time_budget_seconds, processed, len(pending),
            )

        metrics: dict[str, Any] = {
            "mode": mode,
            "dry_run": not persist,
            "rebuilt_from_scratch": replace_all,
            "total_rounds": len(rounds),
            "total_games": total_games,
            "rounds_processed": processed,
            "rounds_remaining": remaining,
            "players": len(states),
            "watermark": watermark,
        }

        if not persist:
            logger.info("Dry run: skipping persistence")
            return metrics

        # --- Persisting ---
        self.tracker.update_progress(
            calc_id,
            current_step="Saving rankings",
            percent_complete=_PCT_REPLAYED,
            rounds_processed=processed,
            rounds_remaining=remaining,
        )
        rankings_result = self.store.persist_rankings(
            states, watermark, calculation_id=calc_id, replace_all=replace_all, rounds_digest=digest
        )

        self.tracker.update_progress(calc_id, current_step="Saving history snapshots", percent_complete=_PCT_RANKINGS_SAVED)
        snapshot_result = self.store.persist_snapshots(snapshots, replace_existing=replace_all)

        metrics.update({
            "rankings_inserted": rankings_result.inserted,
            "rankings_updated": rankings_result.updated,
            "rankings_deleted": rankings_result.deleted,
            "snapshots_inserted": snapshot_result.inserted,
            "snapshots_replaced": snapshot_result.replaced,
            "snapshots_deleted": snapshot_result.deleted,
            "snapshots_failed": snapshot_result.failed,
        })
        if snapshot_result.failed:
            self.tracker.update_progress(calc_id, snapshots_failed=snapshot_result.failed)
        return metrics

    def _replay(
        self,
        calc_id: str,
        states: dict[str, PlayerRatingState],
        rounds: list[Round],
        previous_key: Optional[str],
        data: LeagueData,
    ) -> tuple[dict[str, PlayerRatingState], list[HistorySnapshot], int]:
        """
        Fold rounds over `states` until done or out of time.

        The budget is only checked between rounds, and at least one round is
        always applied, so every run makes progress and never stops mid-round.
        """
        budget = self.settings.rankings_time_budget_seconds
        every = max(1, self.settings.rankings_progress_every_rounds)
        started = self.clock()
        snapshots: list[HistorySnapshot] = []
        processed = 0

        for rnd in rounds:
            if processed and self.clock() - started > budget:
                break

            logger.debug(format_round_info(rnd, data.seasons))
            before = states
            states = self.calculator.apply_round(states, rnd, data.rosters, previous_key)
            snapshots.append(build_snapshot(
                rnd, states, calc_id,
                previous_states=before,
                player_names=data.player_names,
                default_rating=self.params.default_rating,
            ))
            previous_key = rnd.key
            processed += 1

            if processed % every == 0:
                self.tracker.update_progress(
                    calc_id,
                    percent_complete=_PCT_GROUPED + (_PCT_REPLAYED - _PCT_GROUPED) * processed / len(rounds),
                    rounds_processed=processed,
                    seasons_processed=len({r.season_id for r in rounds[:processed]}),
                )

        return states, snapshots, processed

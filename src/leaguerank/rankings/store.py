"""
Rankings store: current rankings and per-round history snapshots.

Write protocol for one run:

1. Current rankings and the global watermark are written in ONE transaction.
   Only rows whose values differ from what is stored are touched, so
   re-persisting an already-persisted state is a no-op.
2. History snapshots are written afterwards, chunk by chunk. Each chunk runs
   under a SAVEPOINT and commits on its own. A failing chunk is logged and
   skipped because the current rankings matter more than any single
   historical snapshot.

Incremental runs only append snapshots. A full rebuild re-derives history:
changed snapshots are replaced, snapshots for rounds not produced by the
rebuild are deleted, identical ones are left alone.

All statements are chunked to `batch_size` rows.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterator, Mapping, Optional, Sequence

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from leaguerank.db.models import Player, PlayerRanking, RankingHistorySnapshot, Season
from leaguerank.rankings.calculator import PlayerRatingState
from leaguerank.rankings.constants import DEFAULT_RATING
from leaguerank.rankings.loader import load_rating_states
from leaguerank.rankings.ranks import rank_map, snapshot_rankings
from leaguerank.rankings.rounds import Round, parse_round_key
from leaguerank.tasks.checkpoints import DBCheckpointStore

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 500


def _chunks(items: Sequence, size: int) -> Iterator[Sequence]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


# ---------------------------------------------------------------------------
# Snapshot records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HistorySnapshot:
    """Snapshot of the rankings taken right after one round."""
    key: str
    season_id: str
    round_start_time: datetime
    round_meta: dict[str, Any]
    rankings: list[dict[str, Any]]
    calculation_meta: dict[str, Any] = field(default_factory=dict)

    def content_equals(
        self,
        round_meta: Mapping[str, Any],
        rankings: list,
        calculation_meta: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """Compare against stored content, ignoring which run wrote it."""
        ours = {k: v for k, v in self.round_meta.items() if k != "calculationId"}
        theirs = {k: v for k, v in (round_meta or {}).items() if k != "calculationId"}
        return (
            ours == theirs
            and self.rankings == rankings
            and self.calculation_meta == dict(calculation_meta or {})
        )

    def to_row(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "season_id": self.season_id,
            "round_start_time": self.round_start_time,
            "round_meta": self.round_meta,
            "calculation_meta": self.calculation_meta,
            "rankings": self.rankings,
            "created_at": datetime.utcnow(),
        }


def build_snapshot(
    rnd: Round,
    states: Mapping[str, PlayerRatingState],
    calculation_id: Optional[str] = None,
    previous_states: Optional[Mapping[str, PlayerRatingState]] = None,
    player_names: Optional[Mapping[str, str]] = None,
    default_rating: float = DEFAULT_RATING,
) -> HistorySnapshot:
    """
    Snapshot the full rankings as they stand after `rnd`.

    Args:
        rnd: The round just applied
        states: Player states after the round
        calculation_id: Run writing the snapshot
        previous_states: Player states before the round. Players absent
            from it are reported against the default rating.
        player_names: Display names keyed by player id
        default_rating: Previous rating reported for players new this round
    """
    ratings = [s.rating for s in states.values()]
    return HistorySnapshot(
        key=rnd.key,
        season_id=rnd.season_id,
        round_start_time=rnd.scheduled_at,
        round_meta={
            "seasonId": rnd.season_id,
            "roundStartTime": rnd.scheduled_at.isoformat(),
            "gameCount": len(rnd.games),
            "gameIds": rnd.game_ids,
            "calculationId": calculation_id,
        },
        calculation_meta={
            "totalGamesProcessed": len(rnd.games),
            # fsum is exact, so the mean does not depend on dict order
            "avgRating": math.fsum(ratings) / len(ratings) if ratings else None,
            # Players who took part in this round
            "activePlayerCount": sum(1 for s in states.values() if s.last_round_key == rnd.key),
        },
        rankings=snapshot_rankings(states, previous_states, player_names, default_rating),
    )


# ---------------------------------------------------------------------------
# Write results
# ---------------------------------------------------------------------------

@dataclass
class RankingsPersistResult:
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    unchanged: int = 0
    watermark_changed: bool = False

    @property
    def mutations(self) -> int:
        return self.inserted + self.updated + self.deleted + int(self.watermark_changed)


@dataclass
class SnapshotPersistResult:
    inserted: int = 0
    replaced: int = 0
    deleted: int = 0
    unchanged: int = 0
    skipped_existing: int = 0
    failed: int = 0
    failed_keys: list[str] = field(default_factory=list)

    @property
    def mutations(self) -> int:
        return self.inserted + self.replaced + self.deleted


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class RankingsStore:
    """
    Reads and writes the rankings tables.

    Usage:
        store = RankingsStore(get_session_factory())
        result = store.persist_rankings(states, watermark="1714755600000_s1")
        store.persist_snapshots(snapshots)
    """

    def __init__(self, session_factory: sessionmaker, batch_size: int = DEFAULT_BATCH_SIZE):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.session_factory = session_factory
        self.batch_size = batch_size

    def load_states(self) -> dict[str, PlayerRatingState]:
        with self.session_factory() as session:
            return load_rating_states(session)

    def persist_rankings(
        self,
        states: Mapping[str, PlayerRatingState],
        watermark: Optional[str],
        calculation_id: Optional[str] = None,
        replace_all: bool = False,
        rounds_digest: Optional[str] = None,
    ) -> RankingsPersistResult:
        """
        Write the current rankings and the watermark in one transaction.

        Args:
            states: Final state map of the run
            watermark: Key of the last round reflected in `states`
            calculation_id: Recorded on rows this run changes
            replace_all: Delete stored players absent from `states`
                (full rebuild). Incremental runs keep them.
            rounds_digest: Fingerprint of the rounds up to `watermark`,
                stored with it

        Raises:
            SQLAlchemyError: After rolling back; nothing is written
        """
        result = RankingsPersistResult()
        ranks = rank_map(states)
        now = datetime.utcnow()

        with self.session_factory() as session:
            try:
                stored = {
                    row.player_id: row
                    for row in session.execute(select(
                        PlayerRanking.player_id,
                        PlayerRanking.rating,
                        PlayerRanking.confidence,
                        PlayerRanking.total_games_counted,
                        PlayerRanking.last_round_key,
                        PlayerRanking.rank,
                    ))
                }

                inserts: list[dict] = []
                updates: list[dict] = []
                for player_id, state in states.items():
                    values = {
                        "player_id": player_id,
                        "rating": state.rating,
                        "confidence": state.confidence,
                        "total_games_counted": state.total_games_counted,
                        "last_round_key": state.last_round_key,
                        "rank": ranks[player_id],
                    }
                    current = stored.get(player_id)
                    if current is None:
                        inserts.append({**values, "calculation_id": calculation_id, "updated_at": now})
                    elif (
                        current.rating != state.rating
                        or current.confidence != state.confidence
                        or current.total_games_counted != state.total_games_counted
                        or current.last_round_key != state.last_round_key
                        or current.rank != ranks[player_id]
                    ):
                        updates.append({**values, "calculation_id": calculation_id, "updated_at": now})
                    else:
                        result.unchanged += 1

                removals = [pid for pid in stored if pid not in states] if replace_all else []

                for chunk in _chunks(removals, self.batch_size):
                    session.execute(
                        delete(PlayerRanking)
                        .where(PlayerRanking.player_id.in_(chunk))
                        .execution_options(synchronize_session=False)
                    )
                for chunk in _chunks(updates, self.batch_size):
                    session.execute(update(PlayerRanking), list(chunk))
                for chunk in _chunks(inserts, self.batch_size):
                    session.execute(insert(PlayerRanking), list(chunk))

                result.watermark_changed = DBCheckpointStore(session).set_watermark(
                    watermark, calculation_id, rounds_digest
                )
                session.commit()
            except SQLAlchemyError:
                session.rollback()
                logger.error("Persisting rankings failed; transaction rolled back")
                raise

        result.inserted = len(inserts)
        result.updated = len(updates)
        result.deleted = len(removals)
        logger.info(
            "Rankings persisted: %d inserted, %d updated, %d deleted, %d unchanged (watermark %s)",
            result.inserted, result.updated, result.deleted, result.unchanged, watermark,
        )
        return result

    def persist_snapshots(
        self,
        snapshots: Sequence[HistorySnapshot],
        replace_existing: bool = False,
    ) -> SnapshotPersistResult:
        """
        Write history snapshots in SAVEPOINT-guarded chunks.

        Args:
            snapshots: Snapshots produced by the run, in round order
            replace_existing: Full rebuild semantics. Replace snapshots whose
                content changed and delete stored snapshots not in
                `snapshots`. Otherwise existing keys are never touched.
        """
        result = SnapshotPersistResult()

        with self.session_factory() as session:
            if replace_existing:
                stored = {
                    row.key: row
                    for row in session.execute(select(
                        RankingHistorySnapshot.key,
                        RankingHistorySnapshot.round_meta,
                        RankingHistorySnapshot.rankings,
                        RankingHistorySnapshot.calculation_meta,
                    ))
                }
            else:
                stored = {key: None for key in session.scalars(select(RankingHistorySnapshot.key))}

            inserts: list[HistorySnapshot] = []
            replacements: list[HistorySnapshot] = []
            for snap in snapshots:
                existing = stored.get(snap.key)
                if snap.key not in stored:
                    inserts.append(snap)
                elif not replace_existing:
                    result.skipped_existing += 1
                elif snap.content_equals(existing.round_meta, existing.rankings, existing.calculation_meta):
                    result.unchanged += 1
                else:
                    replacements.append(snap)

            produced = {snap.key for snap in snapshots}
            orphans = [key for key in stored if key not in produced] if replace_existing else []

            for chunk in _chunks(orphans, self.batch_size):
                if self._write_chunk(session, result, chunk, lambda s, c: s.execute(
                    delete(RankingHistorySnapshot)
                    .where(RankingHistorySnapshot.key.in_(c))
                    .execution_options(synchronize_session=False)
                )):
                    result.deleted += len(chunk)

            for chunk in _chunks(replacements, self.batch_size):
                if self._write_chunk(session, result, [s.key for s in chunk], lambda s, c: s.execute(
                    update(RankingHistorySnapshot),
                    [snap.to_row() for snap in chunk],
                )):
                    result.replaced += len(chunk)

            for chunk in _chunks(inserts, self.batch_size):
                if self._write_chunk(session, result, [s.key for s in chunk], lambda s, c: s.execute(
                    insert(RankingHistorySnapshot),
                    [snap.to_row() for snap in chunk],
                )):
                    result.inserted += len(chunk)

        logger.info(
            "History snapshots: %d inserted, %d replaced, %d deleted, %d unchanged, "
            "%d already present, %d failed",
            result.inserted, result.replaced, result.deleted, result.unchanged,
            result.skipped_existing, result.failed,
        )
        return result

    def _write_chunk(self, session: Session, result: SnapshotPersistResult, keys, write) -> bool:
        try:
            with session.begin_nested():
                write(session, keys)
            session.commit()
            return True
        except SQLAlchemyError as exc:
            session.rollback()
            result.failed += len(keys)
            result.failed_keys.extend(keys)
            logger.warning(
                "Skipping %d history snapshots (%s .. %s): %s",
                len(keys), keys[0], keys[-1], exc,
            )
            return False


# ---------------------------------------------------------------------------
# Read helpers for leaderboard and chart consumers
# ---------------------------------------------------------------------------

def current_rankings(session: Session, limit: Optional[int] = None) -> list[dict[str, Any]]:
    """Live leaderboard ordered by rank, with player display names."""
    query = (
        select(PlayerRanking, Player)
        .outerjoin(Player, Player.id == PlayerRanking.player_id)
        .order_by(PlayerRanking.rank)
    )
    if limit is not None:
        query = query.limit(limit)

    leaderboard = []
    for ranking, player in session.execute(query):
        leaderboard.append({
            "playerId": ranking.player_id,
            "playerName": player.display_name if player else None,
            "rating": ranking.rating,
            "confidence": ranking.confidence,
            "rank": ranking.rank,
            "totalGamesCounted": ranking.total_games_counted,
            "lastRoundKey": ranking.last_round_key,
        })
    return leaderboard


def player_history(session: Session, player_id: str) -> list[dict[str, Any]]:
    """
    Rank and rating of one player after every round, in replay order.

    Rounds where the player had no rated activity yet are omitted. Round
    time and season are decoded from the snapshot key.
    """
    history = []
    rows = session.execute(
        select(RankingHistorySnapshot.key, RankingHistorySnapshot.rankings)
        .outerjoin(Season, Season.id == RankingHistorySnapshot.season_id)
        .order_by(
            Season.date_start,
            RankingHistorySnapshot.round_start_time,
            RankingHistorySnapshot.season_id,
        )
    )
    for key, rankings in rows:
        entry = next((e for e in rankings if e.get("playerId") == player_id), None)
        if entry is None:
            continue
        round_start, season_id = parse_round_key(key)
        history.append({
            "roundKey": key,
            "seasonId": season_id,
            "roundStartTime": round_start.isoformat(),
            "rank": entry["rank"],
            "rating": entry["rating"],
            "change": entry.get("change"),
        })
    return history

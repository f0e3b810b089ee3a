"""
Round calculation status for the admin surface.

Compares the rounds the league data currently groups into against the
history snapshots in the store. A round counts as calculated once its
snapshot exists.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from leaguerank.db.models import RankingHistorySnapshot
from leaguerank.rankings.errors import SeasonNotFoundError
from leaguerank.rankings.loader import load_league_data
from leaguerank.rankings.rounds import group_games_into_rounds
from leaguerank.tasks.checkpoints import DBCheckpointStore


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def round_status(session: Session, season_id: Optional[str] = None) -> dict[str, Any]:
    """
    Calculated and uncalculated round counts, overall or for one season.

    Args:
        session: Open session
        season_id: Restrict the report to this season

    Returns:
        Dict with totalRounds, calculatedRounds, uncalculatedRounds,
        lastCalculatedTime (start time of the latest calculated round in
        replay order), watermark and the per-season round lists.

    Raises:
        SeasonNotFoundError: `season_id` names no season
    """
    data = load_league_data(session)
    if season_id is not None and season_id not in data.seasons:
        raise SeasonNotFoundError(f"Season '{season_id}' not found")

    rounds = group_games_into_rounds(data.games, data.seasons)
    if season_id is not None:
        rounds = [r for r in rounds if r.season_id == season_id]

    calculated_at = dict(session.execute(
        select(RankingHistorySnapshot.key, RankingHistorySnapshot.created_at)
    ).all())

    seasons: dict[str, dict[str, Any]] = {}
    calculated = 0
    last_calculated = None
    for rnd in rounds:
        done = rnd.key in calculated_at
        if done:
            calculated += 1
            last_calculated = rnd.scheduled_at
        season = seasons.setdefault(rnd.season_id, {
            "seasonId": rnd.season_id,
            "seasonName": data.seasons[rnd.season_id].name,
            "calculatedRounds": 0,
            "rounds": [],
        })
        season["calculatedRounds"] += int(done)
        season["rounds"].append({
            "roundKey": rnd.key,
            "startTime": rnd.scheduled_at.isoformat(),
            "gameCount": len(rnd.games),
            "calculated": done,
            "calculatedAt": _iso(calculated_at.get(rnd.key)),
        })

    return {
        "seasonId": season_id,
        "totalRounds": len(rounds),
        "calculatedRounds": calculated,
        "uncalculatedRounds": len(rounds) - calculated,
        "lastCalculatedTime": _iso(last_calculated),
        "watermark": DBCheckpointStore(session).get_watermark(),
        "seasons": list(seasons.values()),
    }

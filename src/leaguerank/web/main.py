"""
HTTP surface for LeagueRank.

Public read endpoints:
- GET /rankings                         Live leaderboard
- GET /rankings/history/{player_id}     Per-round rank/rating time series

Admin endpoints (HTTP Basic, see admin_auth.py):
- POST /admin/rankings/rebuild          Schedule a full rebuild
- POST /admin/rankings/update           Schedule an incremental update
- GET  /admin/rankings/calculations     Recent calculation records
- GET  /admin/rankings/calculations/stalled
- GET  /admin/rankings/calculations/{calculation_id}
- GET  /admin/rankings/rounds           Calculated vs uncalculated rounds

Triggers create the calculation record immediately and run the job as a
background task, so the caller gets an id to poll right away.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query
from sqlalchemy.orm import Session

from leaguerank import __version__
from leaguerank.config import configure_logging, settings
from leaguerank.db.models import AdminUser
from leaguerank.db.session import get_db, get_session_factory
from leaguerank.rankings.driver import RankingsJob
from leaguerank.rankings.errors import CalculationNotFoundError, SeasonNotFoundError
from leaguerank.rankings.status import round_status
from leaguerank.rankings.store import current_rankings, player_history
from leaguerank.rankings.tracker import (
    MODE_FULL,
    MODE_INCREMENTAL,
    CalculationStateView,
    find_stalled_calculations,
)
from leaguerank.web.admin_auth import require_admin

configure_logging()

app = FastAPI(title="LeagueRank", version=__version__)


def get_rankings_job() -> RankingsJob:
    """Dependency providing the job; overridden in tests."""
    return RankingsJob(get_session_factory())


def _schedule(
    job: RankingsJob,
    background_tasks: BackgroundTasks,
    mode: str,
    admin: AdminUser,
    dry_run: bool,
) -> Dict[str, Any]:
    triggered_by = f"admin:{admin.username}"
    calc_id = job.create_calculation(mode, triggered_by)
    runner = job.run_full if mode == MODE_FULL else job.run_incremental
    background_tasks.add_task(runner, triggered_by, calculation_id=calc_id, persist=not dry_run)
    return {"calculationId": calc_id, "mode": mode, "status": "pending", "dryRun": dry_run}


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok", "version": __version__}


@app.get("/rankings")
def api_rankings(
    db: Session = Depends(get_db),
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Maximum players to return"),
) -> Dict[str, Any]:
    """Current leaderboard ordered by rank."""
    players = current_rankings(db, limit=limit)
    return {"count": len(players), "rankings": players}


@app.get("/rankings/history/{player_id}")
def api_player_history(player_id: str, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """
    Rank and rating of a player after every round.

    Rounds before the player's first rated game are omitted.
    """
    return {"playerId": player_id, "history": player_history(db, player_id)}


@app.post("/admin/rankings/rebuild", status_code=202)
def admin_rebuild_rankings(
    background_tasks: BackgroundTasks,
    dry_run: bool = Query(False, description="Compute without writing rankings"),
    admin: AdminUser = Depends(require_admin),
    job: RankingsJob = Depends(get_rankings_job),
) -> Dict[str, Any]:
    return _schedule(job, background_tasks, MODE_FULL, admin, dry_run)


@app.post("/admin/rankings/update", status_code=202)
def admin_update_rankings(
    background_tasks: BackgroundTasks,
    dry_run: bool = Query(False, description="Compute without writing rankings"),
    admin: AdminUser = Depends(require_admin),
    job: RankingsJob = Depends(get_rankings_job),
) -> Dict[str, Any]:
    return _schedule(job, background_tasks, MODE_INCREMENTAL, admin, dry_run)


@app.get("/admin/rankings/calculations")
def admin_list_calculations(
    limit: int = Query(20, ge=1, le=200),
    admin: AdminUser = Depends(require_admin),
    job: RankingsJob = Depends(get_rankings_job),
) -> Dict[str, List[Dict[str, Any]]]:
    return {"calculations": [c.to_dict() for c in job.tracker.list_recent(limit)]}


@app.get("/admin/rankings/calculations/stalled")
def admin_stalled_calculations(
    older_than_seconds: int = Query(
        settings.rankings_stalled_after_seconds, ge=1,
        description="Report runs left pending/running longer than this",
    ),
    admin: AdminUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> Dict[str, List[Dict[str, Any]]]:
    rows = find_stalled_calculations(db, timedelta(seconds=older_than_seconds))
    return {"calculations": [CalculationStateView.from_row(row).to_dict() for row in rows]}


@app.get("/admin/rankings/calculations/{calculation_id}")
def admin_get_calculation(
    calculation_id: str,
    admin: AdminUser = Depends(require_admin),
    job: RankingsJob = Depends(get_rankings_job),
) -> Dict[str, Any]:
    try:
        return job.tracker.get(calculation_id).to_dict()
    except CalculationNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@app.get("/admin/rankings/rounds")
def admin_round_status(
    season_id: Optional[str] = Query(None, description="Restrict to one season"),
    admin: AdminUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Which rounds have a history snapshot and which are still pending."""
    try:
        return round_status(db, season_id=season_id)
    except SeasonNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))

"""
Load league data and stored rating state for a rankings run.

Everything the replay needs is materialized here, before replay starts.
Replay itself reads no external store. Rows are mapped to lightweight
records so the hot loop avoids ORM overhead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session

from leaguerank.db.models import Game, Player, PlayerRanking, Season, Team, TeamRosterMember
from leaguerank.rankings.calculator import PlayerRatingState
from leaguerank.rankings.rounds import GameRecord, SeasonRecord

logger = logging.getLogger(__name__)


@dataclass
class LeagueData:
    """Snapshot of the league store taken at the start of a run."""
    seasons: dict[str, SeasonRecord] = field(default_factory=dict)
    games: list[GameRecord] = field(default_factory=list)
    rosters: dict[str, tuple[str, ...]] = field(default_factory=dict)
    player_names: dict[str, str] = field(default_factory=dict)


def load_league_data(session: Session) -> LeagueData:
    """Read seasons, games, current rosters and player display names."""
    data = LeagueData()

    for row in session.execute(select(Season.id, Season.name, Season.date_start)):
        data.seasons[row.id] = SeasonRecord(id=row.id, name=row.name, date_start=row.date_start)

    game_rows = session.execute(
        select(
            Game.id,
            Game.season_id,
            Game.home_team_id,
            Game.away_team_id,
            Game.home_score,
            Game.away_score,
            Game.scheduled_at,
            Game.game_type,
        ).order_by(Game.id)
    )
    data.games = [
        GameRecord(
            id=row.id,
            season_id=row.season_id,
            home_team_id=row.home_team_id,
            away_team_id=row.away_team_id,
            home_score=row.home_score,
            away_score=row.away_score,
            scheduled_at=row.scheduled_at,
            game_type=row.game_type or "regular",
        )
        for row in game_rows
    ]

    members: dict[str, list[str]] = {team_id: [] for team_id in session.scalars(select(Team.id))}
    roster_rows = session.execute(
        select(TeamRosterMember.team_id, TeamRosterMember.player_id)
        .order_by(TeamRosterMember.team_id, TeamRosterMember.player_id)
    )
    for row in roster_rows:
        members.setdefault(row.team_id, []).append(row.player_id)
    data.rosters = {team_id: tuple(pids) for team_id, pids in members.items()}

    for player in session.scalars(select(Player)):
        data.player_names[player.id] = player.display_name

    logger.info(
        "Loaded %d seasons, %d games, %d teams",
        len(data.seasons), len(data.games), len(data.rosters),
    )
    return data


def load_rating_states(session: Session) -> dict[str, PlayerRatingState]:
    """Read the current rankings back into rating states."""
    states = {}
    for row in session.scalars(select(PlayerRanking)):
        states[row.player_id] = PlayerRatingState(
            player_id=row.player_id,
            rating=row.rating,
            confidence=row.confidence,
            total_games_counted=row.total_games_counted,
            last_round_key=row.last_round_key,
        )
    return states

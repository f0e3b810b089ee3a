"""
Database module for LeagueRank.

Provides SQLAlchemy ORM models and session management.

Usage:
    from leaguerank.db import get_session, PlayerRanking

    with get_session() as session:
        leaderboard = session.query(PlayerRanking).order_by(PlayerRanking.rank).all()
"""

from leaguerank.db.models import (
    AdminUser,
    Base,
    CalculationLock,
    Game,
    PipelineCheckpoint,
    Player,
    PlayerRanking,
    RankingCalculation,
    RankingHistorySnapshot,
    Season,
    Team,
    TeamRosterMember,
)
from leaguerank.db.session import get_db, get_engine, get_session, get_session_factory

__all__ = [
    # Base
    "Base",
    # League store
    "Season",
    "Player",
    "Team",
    "TeamRosterMember",
    "Game",
    # Rankings engine
    "PlayerRanking",
    "RankingHistorySnapshot",
    "RankingCalculation",
    "CalculationLock",
    "PipelineCheckpoint",
    "AdminUser",
    # Session
    "get_db",
    "get_engine",
    "get_session",
    "get_session_factory",
]

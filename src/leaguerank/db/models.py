"""
SQLAlchemy ORM models for LeagueRank.

Two groups of tables live here:

League store (written by the wider league application, read-only for the
rankings engine):
- seasons: Season catalog, ordered by date_start
- players: Player identity and display names
- teams / team_roster_members: Current team rosters
- games: Scheduled and completed games

Rankings engine (written only by leaguerank.rankings):
- player_rankings: Current rating state per player (the live leaderboard)
- ranking_history: One immutable snapshot per processed round
- rankings_calculations: One audit record per job invocation
- calculation_locks: Active-calculation lock record
- pipeline_checkpoints: Key/value checkpoints (global round watermark)
- admin_users: Credentials for the administrative trigger endpoints

Key design decisions:
- Identifiers are strings, matching the document IDs of the league store
- Ratings are stored as double-precision floats without rounding, so a stored
  state reloads bit-for-bit for incremental continuation
- JSON columns use JSONB on PostgreSQL and plain JSON elsewhere
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on PostgreSQL, JSON on SQLite (tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# =============================================================================
# League Store Models
# =============================================================================

class Season(Base):
    """
    A league season.

    Only date_start matters to the rankings engine: it orders rounds
    across seasons.
    """
    __tablename__ = "seasons"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    date_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    date_end: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<Season(id='{self.id}', name='{self.name}')>"


class Player(Base):
    """Player identity. The rankings engine only reads display names."""
    __tablename__ = "players"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        return f"<Player(id='{self.id}', name='{self.display_name}')>"


class Team(Base):
    """
    A team within a season.

    The roster is the team's *current* roster. Historical games are
    attributed to whoever is on the roster when rankings are computed.
    """
    __tablename__ = "teams"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    season_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("seasons.id"), nullable=True
    )

    roster: Mapped[list["TeamRosterMember"]] = relationship(
        back_populates="team", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Team(id='{self.id}', name='{self.name}')>"


class TeamRosterMember(Base):
    """One player on one team's current roster."""
    __tablename__ = "team_roster_members"

    id: Mapped[int] = mapped_column(primary_key=True)
    team_id: Mapped[str] = mapped_column(ForeignKey("teams.id"), nullable=False)
    player_id: Mapped[str] = mapped_column(ForeignKey("players.id"), nullable=False)
    is_captain: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    team: Mapped["Team"] = relationship(back_populates="roster")

    __table_args__ = (
        UniqueConstraint("team_id", "player_id", name="uq_team_roster_member"),
        Index("idx_team_roster_members_team", "team_id"),
    )

    def __repr__(self) -> str:
        return f"<TeamRosterMember(team_id='{self.team_id}', player_id='{self.player_id}')>"


class Game(Base):
    """
    A scheduled or completed game.

    Placeholder games (bracket slots not yet filled, unplayed fixtures) keep
    a NULL team or score and are ignored by the rankings engine.
    """
    __tablename__ = "games"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    season_id: Mapped[str] = mapped_column(ForeignKey("seasons.id"), nullable=False)

    home_team_id: Mapped[Optional[str]] = mapped_column(ForeignKey("teams.id"), nullable=True)
    away_team_id: Mapped[Optional[str]] = mapped_column(ForeignKey("teams.id"), nullable=True)
    home_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    away_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Games sharing (season_id, scheduled_at) form one round
    scheduled_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    # 'regular' or 'playoff'
    game_type: Mapped[str] = mapped_column(String(20), nullable=False, default="regular")
    field: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    __table_args__ = (
        Index("idx_games_season_scheduled", "season_id", "scheduled_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Game(id='{self.id}', {self.home_team_id} {self.home_score}-"
            f"{self.away_score} {self.away_team_id})>"
        )


# =============================================================================
# Rankings Engine Models
# =============================================================================

class PlayerRanking(Base):
    """
    Current rating state per player - the live leaderboard.

    This is the only rankings table overwritten in place. last_round_key is the
    per-player watermark used to resume incremental calculations.
    """
    __tablename__ = "player_rankings"

    player_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    rating: Mapped[float] = mapped_column(Float, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    total_games_counted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_round_key: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    calculation_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_player_rankings_rank", "rank"),
    )

    def __repr__(self) -> str:
        return f"<PlayerRanking(player_id='{self.player_id}', rank={self.rank}, rating={self.rating:.1f})>"


class RankingHistorySnapshot(Base):
    """
    Ranking snapshot taken after one processed round.

    Keyed "{scheduled_at_epoch_millis}_{season_id}" so the key alone orders
    snapshots in time and names the season. Incremental runs only append
    rows; a full rebuild may replace or delete them.
    """
    __tablename__ = "ranking_history"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    season_id: Mapped[str] = mapped_column(String(64), nullable=False)
    round_start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    # {"seasonId", "roundStartTime", "gameCount", "gameIds", "calculationId"}
    round_meta: Mapped[dict] = mapped_column(JSONType, nullable=False)
    # [{"playerId", "playerName", "rank", "rating", "previousRating", "change",
    #   "totalGames"}, ...] ordered by rank
    rankings: Mapped[list] = mapped_column(JSONType, nullable=False)
    # {"avgRating", "activePlayerCount", "totalGamesProcessed"}
    calculation_meta: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_ranking_history_round_start", "round_start_time"),
    )

    def __repr__(self) -> str:
        return f"<RankingHistorySnapshot(key='{self.key}')>"


class RankingCalculation(Base):
    """
    Audit and progress record for one rankings job invocation.

    Lifecycle: pending -> running -> completed | failed. Immutable once
    terminal; never deleted automatically.
    """
    __tablename__ = "rankings_calculations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    mode: Mapped[str] = mapped_column(String(20), nullable=False)  # 'full', 'incremental'
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    triggered_by: Mapped[str] = mapped_column(String(100), nullable=False)

    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # {"currentStep", "percentComplete", "totalSeasons", "totalGames", ...}
    progress: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    # {"message", "stack", "timestamp"} on failure
    error: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    # Rating parameters used for this run
    parameters: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    __table_args__ = (
        Index("idx_rankings_calculations_status_started", "status", "started_at"),
    )

    def __repr__(self) -> str:
        return f"<RankingCalculation(id='{self.id}', mode='{self.mode}', status='{self.status}')>"


class CalculationLock(Base):
    """
    Advisory lock record guarding against concurrent rankings runs.

    Acquired with a conditional UPDATE (compare-and-set). expires_at lets a
    new run take over from one that died without releasing.
    """
    __tablename__ = "calculation_locks"

    name: Mapped[str] = mapped_column(String(80), primary_key=True)
    locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    holder: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    acquired_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<CalculationLock(name='{self.name}', locked={self.locked}, holder='{self.holder}')>"


class PipelineCheckpoint(Base):
    """Key/value checkpoint store for resumable jobs."""

    __tablename__ = "pipeline_checkpoints"

    key: Mapped[str] = mapped_column(String(120), primary_key=True)
    value_json: Mapped[dict] = mapped_column(JSONType, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<PipelineCheckpoint(key='{self.key}')>"


class AdminUser(Base):
    """Administrator allowed to trigger rankings calculations."""

    __tablename__ = "admin_users"

    id: Mapped[int] = mapped_column(primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<AdminUser(username='{self.username}', active={self.is_active})>"

"""
Pytest configuration and fixtures.

This file is automatically loaded by pytest and provides
shared fixtures for all tests.

The rankings job opens several sessions per run, so every test gets its own
file-backed SQLite database instead of a single rolled-back connection.
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from leaguerank.config import Settings
from leaguerank.db.models import Base, Game, Player, Season, Team, TeamRosterMember


def make_engine(path):
    """
    SQLite engine with working SAVEPOINT support.

    pysqlite's own transaction handling interferes with SAVEPOINT, so let
    SQLAlchemy emit BEGIN itself. WAL lets a request's read session stay
    open while the job commits from its own sessions.
    """
    engine = create_engine(f"sqlite:///{path}", echo=False)

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    return engine


class LeagueBuilder:
    """Writes league store rows (seasons, teams, rosters, games) for tests."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def season(self, season_id, date_start, name=None):
        with self.session_factory() as session:
            session.add(Season(id=season_id, name=name or season_id, date_start=date_start))
            session.commit()

    def team(self, team_id, player_ids, season_id=None):
        with self.session_factory() as session:
            for pid in player_ids:
                if session.get(Player, pid) is None:
                    session.add(Player(id=pid, first_name=pid.upper(), last_name="Test"))
            session.add(Team(id=team_id, name=team_id, season_id=season_id))
            session.flush()
            for pid in player_ids:
                session.add(TeamRosterMember(team_id=team_id, player_id=pid))
            session.commit()

    def game(self, game_id, season_id, home, away, home_score, away_score, scheduled_at,
             game_type="regular"):
        with self.session_factory() as session:
            session.add(Game(
                id=game_id,
                season_id=season_id,
                home_team_id=home,
                away_team_id=away,
                home_score=home_score,
                away_score=away_score,
                scheduled_at=scheduled_at,
                game_type=game_type,
            ))
            session.commit()

    def seed(self, rounds=None, with_structure=True):
        """Write the standard league, or only the given rounds of games."""
        if with_structure:
            self.season("spring", SPRING, name="Spring 2025")
            self.season("fall", FALL, name="Fall 2025")
            for team_id, players in LEAGUE_TEAMS.items():
                self.team(team_id, players)
        for games in (LEAGUE_ROUNDS if rounds is None else rounds):
            for game in games:
                self.game(*game)


# Two seasons, four two-player teams, eight rounds in replay order.
# Round 3 holds a tie, round 5 a placeholder game, round 8 a playoff game.
SPRING = datetime(2025, 3, 1)
FALL = datetime(2025, 9, 1)

LEAGUE_TEAMS = {
    "t-red": ("p-alice", "p-bob"),
    "t-blue": ("p-cara", "p-dan"),
    "t-green": ("p-eve", "p-finn"),
    "t-gold": ("p-gus", "p-hana"),
}

LEAGUE_ROUNDS = [
    [("g01", "spring", "t-red", "t-blue", 15, 9, SPRING + timedelta(days=1, hours=18)),
     ("g02", "spring", "t-green", "t-gold", 13, 11, SPRING + timedelta(days=1, hours=18))],
    [("g03", "spring", "t-red", "t-green", 8, 13, SPRING + timedelta(days=8, hours=18))],
    [("g04", "spring", "t-blue", "t-gold", 10, 10, SPRING + timedelta(days=15, hours=18)),
     ("g05", "spring", "t-red", "t-green", 12, 11, SPRING + timedelta(days=15, hours=18))],
    [("g06", "spring", "t-gold", "t-red", 21, 4, SPRING + timedelta(days=22, hours=18))],
    [("g07", "spring", "t-blue", "t-green", 9, 14, SPRING + timedelta(days=29, hours=18)),
     ("g08", "spring", "t-red", None, None, None, SPRING + timedelta(days=29, hours=18))],
    [("g09", "fall", "t-gold", "t-blue", 7, 12, FALL + timedelta(days=3, hours=19))],
    [("g10", "fall", "t-red", "t-gold", 15, 14, FALL + timedelta(days=10, hours=19)),
     ("g11", "fall", "t-green", "t-blue", 6, 15, FALL + timedelta(days=10, hours=19))],
    [("g12", "fall", "t-blue", "t-red", 11, 13, FALL + timedelta(days=17, hours=19), "playoff")],
]


@pytest.fixture
def engine(tmp_path):
    """Fresh file-backed SQLite database with all tables created."""
    engine = make_engine(tmp_path / "leaguerank.db")
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    """A session for direct assertions against the test database."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def test_settings():
    """Settings with small write batches so chunking is exercised."""
    return Settings(
        database_url="sqlite://",
        rankings_write_batch_size=2,
        rankings_lock_ttl_seconds=900,
        rankings_lock_timeout_seconds=0,
        rankings_time_budget_seconds=3600,
        rankings_progress_every_rounds=1,
    )


@pytest.fixture
def league(session_factory):
    return LeagueBuilder(session_factory)


@pytest.fixture
def league_rounds():
    """Games of the standard league grouped by round, in replay order."""
    return LEAGUE_ROUNDS


@pytest.fixture
def database_factory(tmp_path):
    """
    Create extra independent databases within one test.

    Returns a callable name -> (session_factory, LeagueBuilder).
    """
    engines = []

    def _create(name):
        engine = make_engine(tmp_path / f"{name}.db")
        engines.append(engine)
        factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
        return factory, LeagueBuilder(factory)

    yield _create
    for engine in engines:
        engine.dispose()

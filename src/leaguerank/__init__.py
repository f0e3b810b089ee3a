"""
LeagueRank - Player Rankings Engine

Turns a seasonal league's completed games into per-player skill ratings,
a live leaderboard, and a per-round ranking history for charting.

Main components:
- db: SQLAlchemy models and session management
- rankings: Round grouping, rating model, calculation tracking and the job driver
- tasks: Lock and checkpoint primitives for batch jobs
- web: FastAPI admin triggers, status polling and leaderboard endpoints
"""

__version__ = "1.0.0"

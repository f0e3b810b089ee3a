"""
Round grouping and ordering.

A round is every eligible game sharing one (season, scheduled time) slot.
Rounds are replayed in a single global order:

    season date_start ASC, scheduled_at ASC, season_id ASC

Games inside a round are ordered by id. The ordering is the replay key for
incremental continuation, so it must depend only on the game data.

Round keys have the form "{scheduled_at_epoch_millis}_{season_id}". The key
is derived from the game, never stored on it.
"""

import hashlib
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from leaguerank.rankings.errors import DanglingReferenceError, MalformedRoundKeyError

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1)
_ROUND_KEY_RE = re.compile(r"^(-?\d+)_(.+)$")


@dataclass(frozen=True)
class SeasonRecord:
    """Season catalog entry. Only date_start matters for ordering."""
    id: str
    name: str
    date_start: datetime


@dataclass(frozen=True)
class GameRecord:
    """
    One game as read from the league store.

    Placeholder games keep a None team slot or score and are not eligible.
    """
    id: str
    season_id: str
    home_team_id: Optional[str]
    away_team_id: Optional[str]
    home_score: Optional[int]
    away_score: Optional[int]
    scheduled_at: datetime
    game_type: str = "regular"

    @property
    def is_tie(self) -> bool:
        return self.home_score == self.away_score

    @property
    def point_differential(self) -> int:
        """Home score minus away score."""
        return self.home_score - self.away_score


@dataclass(frozen=True)
class Round:
    """A group of simultaneous games in one season, ready to replay."""
    key: str
    season_id: str
    scheduled_at: datetime
    games: tuple[GameRecord, ...] = field(default_factory=tuple)

    @property
    def game_ids(self) -> list[str]:
        return [g.id for g in self.games]

    def __repr__(self) -> str:
        return f"<Round(key='{self.key}', games={len(self.games)})>"


def is_eligible(game) -> bool:
    """
    Whether a game counts for ratings.

    Both team slots and both scores must be filled in. Accepts anything with
    the four attributes (GameRecord or the ORM Game).
    """
    return (
        game.home_team_id is not None
        and game.away_team_id is not None
        and game.home_score is not None
        and game.away_score is not None
    )


def _as_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def to_epoch_millis(value: datetime) -> int:
    """Milliseconds since the Unix epoch. Naive datetimes are taken as UTC."""
    delta = _as_utc_naive(value) - _EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def round_key(scheduled_at: datetime, season_id: str) -> str:
    """Build the round key for a (scheduled time, season) slot."""
    return f"{to_epoch_millis(scheduled_at)}_{season_id}"


def parse_round_key(key: str) -> tuple[datetime, str]:
    """
    Decode a round key into (round start time as naive UTC, season id).

    Raises:
        MalformedRoundKeyError: If the key is not '{epochMillis}_{seasonId}'
    """
    if not isinstance(key, str):
        raise MalformedRoundKeyError(f"Round key must be a string, got {type(key).__name__}")
    match = _ROUND_KEY_RE.match(key)
    if not match:
        raise MalformedRoundKeyError(f"Malformed round key: '{key}'")
    millis = int(match.group(1))
    return _EPOCH + timedelta(milliseconds=millis), match.group(2)


def group_games_into_rounds(
    games: Iterable[GameRecord],
    seasons: dict[str, SeasonRecord],
) -> list[Round]:
    """
    Group eligible games into rounds and order them for replay.

    Args:
        games: All games across all seasons (ineligible ones are skipped)
        seasons: Season catalog keyed by season id

    Returns:
        Rounds in replay order. No two rounds share a key.

    Raises:
        DanglingReferenceError: If an eligible game names an unknown season
    """
    buckets: dict[str, list[GameRecord]] = {}
    skipped = 0

    for game in games:
        if not is_eligible(game):
            skipped += 1
            continue
        if game.season_id not in seasons:
            raise DanglingReferenceError(
                f"Game {game.id} references season '{game.season_id}' which does not exist"
            )
        key = round_key(game.scheduled_at, game.season_id)
        buckets.setdefault(key, []).append(game)

    rounds = []
    for key, bucket in buckets.items():
        scheduled_at, season_id = parse_round_key(key)
        rounds.append(Round(
            key=key,
            season_id=season_id,
            scheduled_at=scheduled_at,
            games=tuple(sorted(bucket, key=lambda g: g.id)),
        ))

    rounds.sort(key=lambda r: (
        _as_utc_naive(seasons[r.season_id].date_start),
        r.scheduled_at,
        r.season_id,
    ))

    logger.debug(
        "Grouped %d eligible games into %d rounds (%d ineligible skipped)",
        sum(len(r.games) for r in rounds), len(rounds), skipped,
    )
    return rounds


def rounds_digest(rounds: Iterable[Round]) -> str:
    """
    Fingerprint of a replayed prefix: round keys, game ids, teams and scores.

    Stored with the watermark so an incremental run can tell whether any
    round it would skip has changed since it was replayed.
    """
    digest = hashlib.sha256()
    for rnd in rounds:
        digest.update(rnd.key.encode("utf-8"))
        for g in rnd.games:
            digest.update(
                f"|{g.id}:{g.home_team_id}:{g.away_team_id}:"
                f"{g.home_score}:{g.away_score}:{g.game_type}".encode("utf-8")
            )
        digest.update(b"\n")
    return digest.hexdigest()


def format_round_info(rnd: Round, seasons: Optional[dict[str, SeasonRecord]] = None) -> str:
    """One-line description of a round for logs."""
    season_name = rnd.season_id
    if seasons and rnd.season_id in seasons:
        season_name = seasons[rnd.season_id].name
    game_word = "game" if len(rnd.games) == 1 else "games"
    return (
        f"Round {rnd.key}: {season_name} @ {rnd.scheduled_at:%Y-%m-%d %H:%M} "
        f"({len(rnd.games)} {game_word})"
    )

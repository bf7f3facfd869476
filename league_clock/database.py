"""Database connection and operations for the league clock."""
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, Generator, Iterable, List, Optional, Union

from .config import DB_PATH
from .models import (
    ClockState,
    Forecast,
    HistoricalSeasonRecord,
    HistoricalTeamStats,
    HistoricalUserStats,
    LedgerEntry,
    Match,
    MatchEvent,
    MatchOdds,
    MatchResult,
    Season,
    StandingsRow,
    Team,
    User,
    Wager,
    WagerLeg,
)

CLOCK_ROW_ID = "global"


class NotFoundError(LookupError):
    """A referenced match, team, season, user or wager does not exist."""


def new_id() -> str:
    return str(uuid.uuid4())


def get_connection(db_path: Union[Path, str] = DB_PATH) -> sqlite3.Connection:
    """Create a database connection with row factory enabled."""
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection, immediate: bool = False) -> Generator[sqlite3.Connection, None, None]:
    """Context manager for database transactions.

    With ``immediate`` the write lock is taken up front, so conditional
    updates inside the block see the latest committed state.
    """
    if immediate and not conn.in_transaction:
        conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def init_database(conn: sqlite3.Connection) -> None:
    """Initialize the database schema."""
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS teams (
            id TEXT PRIMARY KEY,
            name TEXT UNIQUE NOT NULL,
            attack INTEGER DEFAULT 75,
            defense INTEGER DEFAULT 75,
            keeper INTEGER DEFAULT 75,
            seeker INTEGER DEFAULT 75,
            chaser INTEGER DEFAULT 75,
            beater INTEGER DEFAULT 75,
            matches_played INTEGER DEFAULT 0,
            wins INTEGER DEFAULT 0,
            losses INTEGER DEFAULT 0,
            draws INTEGER DEFAULT 0,
            points_for INTEGER DEFAULT 0,
            points_against INTEGER DEFAULT 0,
            special_catches INTEGER DEFAULT 0,
            created_at DATETIME DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            username TEXT UNIQUE NOT NULL,
            balance REAL NOT NULL DEFAULT 1000.0,
            created_at DATETIME DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS seasons (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            start_date DATETIME NOT NULL,
            end_date DATETIME NOT NULL,
            status TEXT CHECK(status IN ('upcoming', 'active', 'finished')) DEFAULT 'upcoming',
            created_at DATETIME DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS season_teams (
            season_id TEXT REFERENCES seasons(id) ON DELETE CASCADE,
            team_id TEXT REFERENCES teams(id) ON DELETE CASCADE,
            PRIMARY KEY (season_id, team_id)
        );

        CREATE TABLE IF NOT EXISTS matches (
            id TEXT PRIMARY KEY,
            season_id TEXT NOT NULL REFERENCES seasons(id) ON DELETE CASCADE,
            home_team_id TEXT NOT NULL REFERENCES teams(id),
            away_team_id TEXT NOT NULL REFERENCES teams(id),
            scheduled_at DATETIME NOT NULL,
            status TEXT CHECK(status IN ('scheduled', 'live', 'finished', 'postponed')) DEFAULT 'scheduled',
            home_score INTEGER DEFAULT 0,
            away_score INTEGER DEFAULT 0,
            special_catch INTEGER DEFAULT 0,
            catch_team_id TEXT,
            duration INTEGER,
            consolidated INTEGER DEFAULT 0,
            odds_home_win REAL,
            odds_away_win REAL,
            odds_draw REAL,
            odds_total_over REAL,
            odds_total_under REAL,
            odds_catch_home REAL,
            odds_catch_away REAL,
            finished_at DATETIME
        );

        -- Owned by matches and replaced wholesale on (re-)finalize
        CREATE TABLE IF NOT EXISTS match_events (
            id TEXT PRIMARY KEY,
            match_id TEXT NOT NULL REFERENCES matches(id) ON DELETE CASCADE,
            minute INTEGER NOT NULL,
            side TEXT NOT NULL,
            team_id TEXT NOT NULL,
            kind TEXT NOT NULL,
            player TEXT,
            description TEXT NOT NULL,
            points INTEGER DEFAULT 0
        );

        CREATE TABLE IF NOT EXISTS wagers (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            match_id TEXT NOT NULL REFERENCES matches(id) ON DELETE CASCADE,
            kind TEXT,
            line REAL,
            selection TEXT,
            category TEXT,
            prediction TEXT,
            stake REAL NOT NULL,
            odds REAL NOT NULL,
            potential_payout REAL NOT NULL,
            status TEXT CHECK(status IN ('pending', 'won', 'lost', 'cancelled')) DEFAULT 'pending',
            placed_at DATETIME DEFAULT CURRENT_TIMESTAMP,
            resolved_at DATETIME,
            reason TEXT
        );

        CREATE TABLE IF NOT EXISTS wager_legs (
            wager_id TEXT NOT NULL REFERENCES wagers(id) ON DELETE CASCADE,
            position INTEGER NOT NULL,
            match_id TEXT NOT NULL REFERENCES matches(id),
            kind TEXT,
            line REAL,
            selection TEXT,
            category TEXT,
            prediction TEXT,
            PRIMARY KEY (wager_id, position)
        );

        CREATE TABLE IF NOT EXISTS forecasts (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            match_id TEXT NOT NULL REFERENCES matches(id) ON DELETE CASCADE,
            outcome TEXT CHECK(outcome IN ('home', 'away', 'draw')) NOT NULL,
            confidence INTEGER CHECK(confidence >= 1 AND confidence <= 5) DEFAULT 3,
            points INTEGER DEFAULT 0,
            status TEXT CHECK(status IN ('pending', 'correct', 'incorrect')) DEFAULT 'pending',
            created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
            resolved_at DATETIME,
            UNIQUE(user_id, match_id)
        );

        CREATE TABLE IF NOT EXISTS standings (
            season_id TEXT REFERENCES seasons(id) ON DELETE CASCADE,
            team_id TEXT REFERENCES teams(id) ON DELETE CASCADE,
            position INTEGER,
            points INTEGER DEFAULT 0,
            matches_played INTEGER DEFAULT 0,
            wins INTEGER DEFAULT 0,
            losses INTEGER DEFAULT 0,
            draws INTEGER DEFAULT 0,
            points_for INTEGER DEFAULT 0,
            points_against INTEGER DEFAULT 0,
            points_difference INTEGER DEFAULT 0,
            special_catches INTEGER DEFAULT 0,
            updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (season_id, team_id)
        );

        CREATE TABLE IF NOT EXISTS ledger_entries (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            kind TEXT CHECK(kind IN ('bet_placed', 'bet_won', 'bet_lost', 'refund')) NOT NULL,
            amount REAL NOT NULL,
            balance_before REAL NOT NULL,
            balance_after REAL NOT NULL,
            description TEXT,
            reference_id TEXT,
            created_at DATETIME DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS historical_seasons (
            id TEXT PRIMARY KEY,
            season_id TEXT UNIQUE NOT NULL,
            name TEXT NOT NULL,
            start_date DATETIME NOT NULL,
            end_date DATETIME NOT NULL,
            total_teams INTEGER DEFAULT 0,
            total_matches INTEGER DEFAULT 0,
            finished_matches INTEGER DEFAULT 0,
            total_bets INTEGER DEFAULT 0,
            total_predictions INTEGER DEFAULT 0,
            total_revenue REAL DEFAULT 0,
            champion_team_id TEXT,
            champion_team_name TEXT,
            archived_at DATETIME DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS historical_team_stats (
            team_id TEXT PRIMARY KEY,
            team_name TEXT NOT NULL,
            total_seasons INTEGER DEFAULT 0,
            total_matches INTEGER DEFAULT 0,
            total_wins INTEGER DEFAULT 0,
            total_losses INTEGER DEFAULT 0,
            total_draws INTEGER DEFAULT 0,
            total_points_for INTEGER DEFAULT 0,
            total_points_against INTEGER DEFAULT 0,
            total_special_catches INTEGER DEFAULT 0,
            championships_won INTEGER DEFAULT 0,
            best_position INTEGER,
            worst_position INTEGER,
            updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS historical_user_stats (
            user_id TEXT PRIMARY KEY,
            username TEXT NOT NULL,
            total_bets INTEGER DEFAULT 0,
            total_staked REAL DEFAULT 0,
            total_winnings REAL DEFAULT 0,
            total_losses REAL DEFAULT 0,
            total_predictions INTEGER DEFAULT 0,
            correct_predictions INTEGER DEFAULT 0,
            prediction_accuracy REAL DEFAULT 0,
            prediction_points INTEGER DEFAULT 0,
            updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
        );

        -- Single row, id = 'global'
        CREATE TABLE IF NOT EXISTS clock_state (
            id TEXT PRIMARY KEY,
            current_time DATETIME NOT NULL,
            speed TEXT CHECK(speed IN ('slow', 'medium', 'fast')) DEFAULT 'medium',
            auto_mode INTEGER DEFAULT 0,
            last_update DATETIME,
            active_season_id TEXT
        );

        -- Indexes
        CREATE INDEX IF NOT EXISTS idx_matches_status ON matches(status);
        CREATE INDEX IF NOT EXISTS idx_matches_scheduled ON matches(scheduled_at);
        CREATE INDEX IF NOT EXISTS idx_matches_season ON matches(season_id);
        CREATE INDEX IF NOT EXISTS idx_events_match ON match_events(match_id);
        CREATE INDEX IF NOT EXISTS idx_wagers_match ON wagers(match_id);
        CREATE INDEX IF NOT EXISTS idx_wagers_status ON wagers(status);
        CREATE INDEX IF NOT EXISTS idx_forecasts_match ON forecasts(match_id);
        CREATE INDEX IF NOT EXISTS idx_ledger_user ON ledger_entries(user_id);
    """)
    conn.commit()


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# Team operations
def _row_to_team(row: sqlite3.Row) -> Team:
    return Team(
        id=row["id"],
        name=row["name"],
        attack=row["attack"],
        defense=row["defense"],
        keeper=row["keeper"],
        seeker=row["seeker"],
        chaser=row["chaser"],
        beater=row["beater"],
        matches_played=row["matches_played"],
        wins=row["wins"],
        losses=row["losses"],
        draws=row["draws"],
        points_for=row["points_for"],
        points_against=row["points_against"],
        special_catches=row["special_catches"],
    )


def insert_team(conn: sqlite3.Connection, team: Team) -> str:
    """Insert a team with its strength profile, returning its ID."""
    conn.execute(
        """
        INSERT INTO teams (id, name, attack, defense, keeper, seeker, chaser, beater)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (team.id, team.name, team.attack, team.defense, team.keeper, team.seeker, team.chaser, team.beater)
    )
    return team.id


def get_team(conn: sqlite3.Connection, team_id: str) -> Optional[Team]:
    """Get a team by its ID."""
    cursor = conn.execute("SELECT * FROM teams WHERE id = ?", (team_id,))
    row = cursor.fetchone()
    return _row_to_team(row) if row else None


def require_team(conn: sqlite3.Connection, team_id: str) -> Team:
    team = get_team(conn, team_id)
    if team is None:
        raise NotFoundError(f"Team {team_id} not found")
    return team


def get_all_teams(conn: sqlite3.Connection) -> List[Team]:
    """Get all teams ordered by name."""
    cursor = conn.execute("SELECT * FROM teams ORDER BY name")
    return [_row_to_team(row) for row in cursor.fetchall()]


def adjust_team_record(
    conn: sqlite3.Connection,
    team_id: str,
    played: int = 0,
    wins: int = 0,
    losses: int = 0,
    draws: int = 0,
    points_for: int = 0,
    points_against: int = 0,
    special_catches: int = 0
) -> None:
    """Add (or, with negative values, remove) one result from a team's career totals."""
    conn.execute(
        """
        UPDATE teams SET
            matches_played = matches_played + ?,
            wins = wins + ?,
            losses = losses + ?,
            draws = draws + ?,
            points_for = points_for + ?,
            points_against = points_against + ?,
            special_catches = special_catches + ?
        WHERE id = ?
        """,
        (played, wins, losses, draws, points_for, points_against, special_catches, team_id)
    )


# User operations
def _row_to_user(row: sqlite3.Row) -> User:
    return User(id=row["id"], username=row["username"], balance=row["balance"], created_at=_dt(row["created_at"]))


def insert_user(conn: sqlite3.Connection, username: str, balance: float, user_id: Optional[str] = None) -> str:
    """Create a user account, returning its ID."""
    user_id = user_id or new_id()
    conn.execute(
        "INSERT INTO users (id, username, balance, created_at) VALUES (?, ?, ?, ?)",
        (user_id, username, balance, datetime.now().isoformat())
    )
    return user_id


def get_user(conn: sqlite3.Connection, user_id: str) -> Optional[User]:
    cursor = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,))
    row = cursor.fetchone()
    return _row_to_user(row) if row else None


def require_user(conn: sqlite3.Connection, user_id: str) -> User:
    user = get_user(conn, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    return user


def get_all_users(conn: sqlite3.Connection) -> List[User]:
    cursor = conn.execute("SELECT * FROM users ORDER BY username")
    return [_row_to_user(row) for row in cursor.fetchall()]


def update_user_balance(conn: sqlite3.Connection, user_id: str, balance: float) -> None:
    conn.execute("UPDATE users SET balance = ? WHERE id = ?", (balance, user_id))


# Season operations
def _row_to_season(row: sqlite3.Row) -> Season:
    return Season(
        id=row["id"],
        name=row["name"],
        start_date=_dt(row["start_date"]),
        end_date=_dt(row["end_date"]),
        status=row["status"],
    )


def insert_season(conn: sqlite3.Connection, season: Season) -> str:
    conn.execute(
        "INSERT INTO seasons (id, name, start_date, end_date, status) VALUES (?, ?, ?, ?, ?)",
        (season.id, season.name, _iso(season.start_date), _iso(season.end_date), season.status)
    )
    return season.id


def get_season(conn: sqlite3.Connection, season_id: str) -> Optional[Season]:
    cursor = conn.execute("SELECT * FROM seasons WHERE id = ?", (season_id,))
    row = cursor.fetchone()
    return _row_to_season(row) if row else None


def require_season(conn: sqlite3.Connection, season_id: str) -> Season:
    season = get_season(conn, season_id)
    if season is None:
        raise NotFoundError(f"Season {season_id} not found")
    return season


def get_seasons_by_status(conn: sqlite3.Connection, status: str) -> List[Season]:
    """Get all seasons with a given status, most recent first."""
    cursor = conn.execute("SELECT * FROM seasons WHERE status = ? ORDER BY start_date DESC", (status,))
    return [_row_to_season(row) for row in cursor.fetchall()]


def update_season_status(conn: sqlite3.Connection, season_id: str, status: str) -> None:
    conn.execute("UPDATE seasons SET status = ? WHERE id = ?", (status, season_id))


def enroll_team(conn: sqlite3.Connection, season_id: str, team_id: str) -> None:
    conn.execute(
        "INSERT OR IGNORE INTO season_teams (season_id, team_id) VALUES (?, ?)",
        (season_id, team_id)
    )


def get_season_team_ids(conn: sqlite3.Connection, season_id: str) -> List[str]:
    cursor = conn.execute(
        "SELECT team_id FROM season_teams WHERE season_id = ? ORDER BY team_id",
        (season_id,)
    )
    return [row["team_id"] for row in cursor.fetchall()]


# Match operations
def _row_to_match(row: sqlite3.Row) -> Match:
    return Match(
        id=row["id"],
        season_id=row["season_id"],
        home_team_id=row["home_team_id"],
        away_team_id=row["away_team_id"],
        scheduled_at=_dt(row["scheduled_at"]),
        status=row["status"],
        home_score=row["home_score"] or 0,
        away_score=row["away_score"] or 0,
        special_catch=bool(row["special_catch"]),
        catch_team_id=row["catch_team_id"],
        duration=row["duration"],
        consolidated=bool(row["consolidated"]),
        odds=MatchOdds(
            home_win=row["odds_home_win"] or 2.0,
            away_win=row["odds_away_win"] or 2.0,
            draw=row["odds_draw"] or 5.0,
            total_over=row["odds_total_over"] or 1.8,
            total_under=row["odds_total_under"] or 1.8,
            catch_home=row["odds_catch_home"] or 1.9,
            catch_away=row["odds_catch_away"] or 1.9,
        ),
    )


def insert_match(conn: sqlite3.Connection, match: Match) -> str:
    """Insert a scheduled fixture with its odds snapshot."""
    conn.execute(
        """
        INSERT INTO matches (
            id, season_id, home_team_id, away_team_id, scheduled_at, status,
            odds_home_win, odds_away_win, odds_draw, odds_total_over, odds_total_under,
            odds_catch_home, odds_catch_away
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            match.id, match.season_id, match.home_team_id, match.away_team_id,
            _iso(match.scheduled_at), match.status,
            match.odds.home_win, match.odds.away_win, match.odds.draw,
            match.odds.total_over, match.odds.total_under,
            match.odds.catch_home, match.odds.catch_away,
        )
    )
    return match.id


def get_match(conn: sqlite3.Connection, match_id: str) -> Optional[Match]:
    """Get a match by its ID."""
    cursor = conn.execute("SELECT * FROM matches WHERE id = ?", (match_id,))
    row = cursor.fetchone()
    return _row_to_match(row) if row else None


def require_match(conn: sqlite3.Connection, match_id: str) -> Match:
    match = get_match(conn, match_id)
    if match is None:
        raise NotFoundError(f"Match {match_id} not found")
    return match


def get_matches_by_status(conn: sqlite3.Connection, status: str) -> List[Match]:
    """Get all matches with a given status, in scheduled order."""
    cursor = conn.execute(
        "SELECT * FROM matches WHERE status = ? ORDER BY scheduled_at, id",
        (status,)
    )
    return [_row_to_match(row) for row in cursor.fetchall()]


def get_due_matches(conn: sqlite3.Connection, after: datetime, until: datetime) -> List[Match]:
    """Scheduled matches with after < scheduled_at <= until, oldest first."""
    cursor = conn.execute(
        """
        SELECT * FROM matches
        WHERE status = 'scheduled' AND scheduled_at > ? AND scheduled_at <= ?
        ORDER BY scheduled_at, id
        """,
        (after.isoformat(), until.isoformat())
    )
    return [_row_to_match(row) for row in cursor.fetchall()]


def get_next_scheduled_match(conn: sqlite3.Connection, after: Optional[datetime] = None) -> Optional[Match]:
    """Earliest scheduled match, optionally only those kicking off after ``after``."""
    cursor = conn.execute(
        """
        SELECT * FROM matches
        WHERE status = 'scheduled' AND scheduled_at > ?
        ORDER BY scheduled_at, id LIMIT 1
        """,
        ((after or datetime.min).isoformat(),)
    )
    row = cursor.fetchone()
    return _row_to_match(row) if row else None


def get_season_matches(conn: sqlite3.Connection, season_id: str, status: Optional[str] = None) -> List[Match]:
    if status is None:
        cursor = conn.execute(
            "SELECT * FROM matches WHERE season_id = ? ORDER BY scheduled_at, id",
            (season_id,)
        )
    else:
        cursor = conn.execute(
            "SELECT * FROM matches WHERE season_id = ? AND status = ? ORDER BY scheduled_at, id",
            (season_id, status)
        )
    return [_row_to_match(row) for row in cursor.fetchall()]


def start_match_row(conn: sqlite3.Connection, match_id: str) -> bool:
    """Move a scheduled match to live. False if it already left the schedule."""
    cursor = conn.execute(
        """
        UPDATE matches SET status = 'live'
        WHERE id = ? AND status = 'scheduled' AND COALESCE(consolidated, 0) = 0
        """,
        (match_id,)
    )
    return cursor.rowcount == 1


def settle_match_row(
    conn: sqlite3.Connection,
    match_id: str,
    result: MatchResult,
    catch_team_id: Optional[str],
    finished_at: datetime
) -> bool:
    """Write the final result unless the match is already finished or consolidated.

    Returns True only for the call that performed the transition.
    """
    cursor = conn.execute(
        """
        UPDATE matches SET
            status = 'finished',
            home_score = ?,
            away_score = ?,
            duration = ?,
            special_catch = ?,
            catch_team_id = ?,
            consolidated = 1,
            finished_at = ?
        WHERE id = ? AND status != 'finished' AND COALESCE(consolidated, 0) = 0
        """,
        (
            result.home_score, result.away_score, result.duration,
            1 if result.special_catch else 0, catch_team_id,
            finished_at.isoformat(), match_id,
        )
    )
    return cursor.rowcount == 1


def reopen_match_row(conn: sqlite3.Connection, match_id: str) -> bool:
    """Administrative reset of a finished match back to scheduled."""
    cursor = conn.execute(
        """
        UPDATE matches SET
            status = 'scheduled',
            home_score = 0,
            away_score = 0,
            duration = NULL,
            special_catch = 0,
            catch_team_id = NULL,
            consolidated = 0,
            finished_at = NULL
        WHERE id = ? AND status = 'finished'
        """,
        (match_id,)
    )
    return cursor.rowcount == 1


def replace_match_events(
    conn: sqlite3.Connection,
    match_id: str,
    events: Iterable[MatchEvent],
    home_team_id: str,
    away_team_id: str
) -> int:
    """Replace a match's whole event log, returning the number of events written."""
    conn.execute("DELETE FROM match_events WHERE match_id = ?", (match_id,))
    count = 0
    for event in events:
        team_id = home_team_id if event.side == "home" else away_team_id
        conn.execute(
            """
            INSERT INTO match_events (id, match_id, minute, side, team_id, kind, player, description, points)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (event.id, match_id, event.minute, event.side, team_id, event.kind,
             event.player, event.description, event.points)
        )
        count += 1
    return count


def get_match_events(conn: sqlite3.Connection, match_id: str) -> List[MatchEvent]:
    cursor = conn.execute(
        "SELECT * FROM match_events WHERE match_id = ? ORDER BY minute, id",
        (match_id,)
    )
    return [
        MatchEvent(
            id=row["id"],
            minute=row["minute"],
            side=row["side"],
            kind=row["kind"],
            description=row["description"],
            points=row["points"],
            player=row["player"],
        )
        for row in cursor.fetchall()
    ]


# Wager operations
def _row_to_leg(row: sqlite3.Row) -> WagerLeg:
    return WagerLeg(
        match_id=row["match_id"],
        kind=row["kind"],
        line=row["line"],
        selection=row["selection"],
        category=row["category"],
        prediction=row["prediction"],
        position=row["position"],
    )


def _row_to_wager(conn: sqlite3.Connection, row: sqlite3.Row) -> Wager:
    wager = Wager(
        id=row["id"],
        user_id=row["user_id"],
        match_id=row["match_id"],
        stake=row["stake"],
        odds=row["odds"],
        potential_payout=row["potential_payout"],
        kind=row["kind"],
        line=row["line"],
        selection=row["selection"],
        category=row["category"],
        prediction=row["prediction"],
        status=row["status"],
        placed_at=_dt(row["placed_at"]),
        resolved_at=_dt(row["resolved_at"]),
        reason=row["reason"],
    )
    if wager.kind == "combined":
        wager.legs = get_wager_legs(conn, wager.id)
    return wager


def insert_wager(conn: sqlite3.Connection, wager: Wager) -> str:
    """Insert a wager and, for combined wagers, its legs."""
    conn.execute(
        """
        INSERT INTO wagers (
            id, user_id, match_id, kind, line, selection, category, prediction,
            stake, odds, potential_payout, status, placed_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            wager.id, wager.user_id, wager.match_id, wager.kind, wager.line, wager.selection,
            wager.category, wager.prediction, wager.stake, wager.odds, wager.potential_payout,
            wager.status, _iso(wager.placed_at or datetime.now()),
        )
    )
    for position, leg in enumerate(wager.legs):
        conn.execute(
            """
            INSERT INTO wager_legs (wager_id, position, match_id, kind, line, selection, category, prediction)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (wager.id, position, leg.match_id, leg.kind, leg.line, leg.selection, leg.category, leg.prediction)
        )
    return wager.id


def get_wager(conn: sqlite3.Connection, wager_id: str) -> Optional[Wager]:
    cursor = conn.execute("SELECT * FROM wagers WHERE id = ?", (wager_id,))
    row = cursor.fetchone()
    return _row_to_wager(conn, row) if row else None


def require_wager(conn: sqlite3.Connection, wager_id: str) -> Wager:
    wager = get_wager(conn, wager_id)
    if wager is None:
        raise NotFoundError(f"Wager {wager_id} not found")
    return wager


def get_wager_legs(conn: sqlite3.Connection, wager_id: str) -> List[WagerLeg]:
    cursor = conn.execute(
        "SELECT * FROM wager_legs WHERE wager_id = ? ORDER BY position",
        (wager_id,)
    )
    return [_row_to_leg(row) for row in cursor.fetchall()]


def get_pending_single_wagers(conn: sqlite3.Connection, match_id: str) -> List[Wager]:
    """Pending wagers on one match, excluding combined wagers."""
    cursor = conn.execute(
        """
        SELECT * FROM wagers
        WHERE match_id = ? AND status = 'pending'
        AND COALESCE(kind, '') != 'combined' AND COALESCE(category, '') != 'combined'
        ORDER BY placed_at, id
        """,
        (match_id,)
    )
    return [_row_to_wager(conn, row) for row in cursor.fetchall()]


def get_pending_combined_wagers(conn: sqlite3.Connection) -> List[Wager]:
    """All pending combined wagers, whatever match they are anchored on."""
    cursor = conn.execute(
        """
        SELECT * FROM wagers
        WHERE status = 'pending' AND (kind = 'combined' OR category = 'combined')
        ORDER BY placed_at, id
        """
    )
    return [_row_to_wager(conn, row) for row in cursor.fetchall()]


def get_wagers_by_user(conn: sqlite3.Connection, user_id: str) -> List[Wager]:
    cursor = conn.execute(
        "SELECT * FROM wagers WHERE user_id = ? ORDER BY placed_at DESC, id",
        (user_id,)
    )
    return [_row_to_wager(conn, row) for row in cursor.fetchall()]


def mark_wager_resolved(
    conn: sqlite3.Connection,
    wager_id: str,
    status: str,
    reason: str,
    resolved_at: datetime
) -> bool:
    """Move a wager out of pending. Returns False if it had already left pending."""
    cursor = conn.execute(
        "UPDATE wagers SET status = ?, reason = ?, resolved_at = ? WHERE id = ? AND status = 'pending'",
        (status, reason, resolved_at.isoformat(), wager_id)
    )
    return cursor.rowcount == 1


# Forecast operations
def _row_to_forecast(row: sqlite3.Row) -> Forecast:
    return Forecast(
        id=row["id"],
        user_id=row["user_id"],
        match_id=row["match_id"],
        outcome=row["outcome"],
        confidence=row["confidence"],
        status=row["status"],
        points=row["points"],
        created_at=_dt(row["created_at"]),
        resolved_at=_dt(row["resolved_at"]),
    )


def insert_forecast(conn: sqlite3.Connection, forecast: Forecast) -> str:
    conn.execute(
        """
        INSERT INTO forecasts (id, user_id, match_id, outcome, confidence, status, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (forecast.id, forecast.user_id, forecast.match_id, forecast.outcome, forecast.confidence,
         forecast.status, _iso(forecast.created_at or datetime.now()))
    )
    return forecast.id


def get_forecast(conn: sqlite3.Connection, forecast_id: str) -> Optional[Forecast]:
    cursor = conn.execute("SELECT * FROM forecasts WHERE id = ?", (forecast_id,))
    row = cursor.fetchone()
    return _row_to_forecast(row) if row else None


def get_forecast_for_user_match(conn: sqlite3.Connection, user_id: str, match_id: str) -> Optional[Forecast]:
    cursor = conn.execute(
        "SELECT * FROM forecasts WHERE user_id = ? AND match_id = ?",
        (user_id, match_id)
    )
    row = cursor.fetchone()
    return _row_to_forecast(row) if row else None


def get_pending_forecasts(conn: sqlite3.Connection, match_id: str) -> List[Forecast]:
    cursor = conn.execute(
        "SELECT * FROM forecasts WHERE match_id = ? AND status = 'pending' ORDER BY created_at, id",
        (match_id,)
    )
    return [_row_to_forecast(row) for row in cursor.fetchall()]


def mark_forecast_resolved(
    conn: sqlite3.Connection,
    forecast_id: str,
    status: str,
    points: int,
    resolved_at: datetime
) -> bool:
    cursor = conn.execute(
        "UPDATE forecasts SET status = ?, points = ?, resolved_at = ? WHERE id = ? AND status = 'pending'",
        (status, points, resolved_at.isoformat(), forecast_id)
    )
    return cursor.rowcount == 1


# Standings operations
def replace_standings(conn: sqlite3.Connection, season_id: str, rows: List[StandingsRow]) -> None:
    """Replace a season's entire standings table."""
    conn.execute("DELETE FROM standings WHERE season_id = ?", (season_id,))
    now = datetime.now().isoformat()
    for row in rows:
        conn.execute(
            """
            INSERT INTO standings (
                season_id, team_id, position, points, matches_played, wins, losses, draws,
                points_for, points_against, points_difference, special_catches, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                season_id, row.team_id, row.position, row.points, row.matches_played,
                row.wins, row.losses, row.draws, row.points_for, row.points_against,
                row.goal_difference, row.special_catches, now,
            )
        )


def get_standings(conn: sqlite3.Connection, season_id: str) -> List[StandingsRow]:
    cursor = conn.execute(
        "SELECT * FROM standings WHERE season_id = ? ORDER BY position",
        (season_id,)
    )
    return [
        StandingsRow(
            season_id=row["season_id"],
            team_id=row["team_id"],
            position=row["position"],
            points=row["points"],
            matches_played=row["matches_played"],
            wins=row["wins"],
            losses=row["losses"],
            draws=row["draws"],
            points_for=row["points_for"],
            points_against=row["points_against"],
            special_catches=row["special_catches"],
        )
        for row in cursor.fetchall()
    ]


# Ledger operations
def insert_ledger_entry(conn: sqlite3.Connection, entry: LedgerEntry) -> str:
    conn.execute(
        """
        INSERT INTO ledger_entries (
            id, user_id, kind, amount, balance_before, balance_after, description, reference_id, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            entry.id, entry.user_id, entry.kind, entry.amount, entry.balance_before,
            entry.balance_after, entry.description, entry.reference_id,
            _iso(entry.created_at or datetime.now()),
        )
    )
    return entry.id


def get_ledger_for_user(conn: sqlite3.Connection, user_id: str) -> List[LedgerEntry]:
    cursor = conn.execute(
        "SELECT * FROM ledger_entries WHERE user_id = ? ORDER BY created_at, rowid",
        (user_id,)
    )
    return [
        LedgerEntry(
            id=row["id"],
            user_id=row["user_id"],
            kind=row["kind"],
            amount=row["amount"],
            balance_before=row["balance_before"],
            balance_after=row["balance_after"],
            description=row["description"],
            reference_id=row["reference_id"],
            created_at=_dt(row["created_at"]),
        )
        for row in cursor.fetchall()
    ]


# Historical operations
def _row_to_historical_season(row: sqlite3.Row) -> HistoricalSeasonRecord:
    return HistoricalSeasonRecord(
        id=row["id"],
        season_id=row["season_id"],
        name=row["name"],
        start_date=_dt(row["start_date"]),
        end_date=_dt(row["end_date"]),
        total_teams=row["total_teams"],
        total_matches=row["total_matches"],
        finished_matches=row["finished_matches"],
        total_bets=row["total_bets"],
        total_predictions=row["total_predictions"],
        total_revenue=row["total_revenue"],
        champion_team_id=row["champion_team_id"],
        champion_team_name=row["champion_team_name"],
        archived_at=_dt(row["archived_at"]),
    )


def get_historical_season(conn: sqlite3.Connection, season_id: str) -> Optional[HistoricalSeasonRecord]:
    cursor = conn.execute("SELECT * FROM historical_seasons WHERE season_id = ?", (season_id,))
    row = cursor.fetchone()
    return _row_to_historical_season(row) if row else None


def get_all_historical_seasons(conn: sqlite3.Connection) -> List[HistoricalSeasonRecord]:
    cursor = conn.execute("SELECT * FROM historical_seasons ORDER BY start_date DESC")
    return [_row_to_historical_season(row) for row in cursor.fetchall()]


def insert_historical_season(conn: sqlite3.Connection, record: HistoricalSeasonRecord) -> str:
    conn.execute(
        """
        INSERT INTO historical_seasons (
            id, season_id, name, start_date, end_date, total_teams, total_matches,
            finished_matches, total_bets, total_predictions, total_revenue,
            champion_team_id, champion_team_name, archived_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            record.id, record.season_id, record.name, _iso(record.start_date), _iso(record.end_date),
            record.total_teams, record.total_matches, record.finished_matches, record.total_bets,
            record.total_predictions, record.total_revenue, record.champion_team_id,
            record.champion_team_name, _iso(record.archived_at or datetime.now()),
        )
    )
    return record.id


def _row_to_team_stats(row: sqlite3.Row) -> HistoricalTeamStats:
    return HistoricalTeamStats(
        team_id=row["team_id"],
        team_name=row["team_name"],
        total_seasons=row["total_seasons"],
        total_matches=row["total_matches"],
        total_wins=row["total_wins"],
        total_losses=row["total_losses"],
        total_draws=row["total_draws"],
        total_points_for=row["total_points_for"],
        total_points_against=row["total_points_against"],
        total_special_catches=row["total_special_catches"],
        championships_won=row["championships_won"],
        best_position=row["best_position"],
        worst_position=row["worst_position"],
    )


def get_historical_team_stats(conn: sqlite3.Connection, team_id: str) -> Optional[HistoricalTeamStats]:
    cursor = conn.execute("SELECT * FROM historical_team_stats WHERE team_id = ?", (team_id,))
    row = cursor.fetchone()
    return _row_to_team_stats(row) if row else None


def get_all_historical_team_stats(conn: sqlite3.Connection) -> List[HistoricalTeamStats]:
    cursor = conn.execute(
        "SELECT * FROM historical_team_stats ORDER BY championships_won DESC, total_wins DESC, team_name"
    )
    return [_row_to_team_stats(row) for row in cursor.fetchall()]


def save_historical_team_stats(conn: sqlite3.Connection, stats: HistoricalTeamStats) -> None:
    conn.execute(
        """
        INSERT OR REPLACE INTO historical_team_stats (
            team_id, team_name, total_seasons, total_matches, total_wins, total_losses,
            total_draws, total_points_for, total_points_against, total_special_catches,
            championships_won, best_position, worst_position, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            stats.team_id, stats.team_name, stats.total_seasons, stats.total_matches,
            stats.total_wins, stats.total_losses, stats.total_draws, stats.total_points_for,
            stats.total_points_against, stats.total_special_catches, stats.championships_won,
            stats.best_position, stats.worst_position, datetime.now().isoformat(),
        )
    )


def replace_historical_user_stats(conn: sqlite3.Connection, stats: List[HistoricalUserStats]) -> None:
    conn.execute("DELETE FROM historical_user_stats")
    now = datetime.now().isoformat()
    for s in stats:
        conn.execute(
            """
            INSERT INTO historical_user_stats (
                user_id, username, total_bets, total_staked, total_winnings, total_losses,
                total_predictions, correct_predictions, prediction_accuracy, prediction_points, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                s.user_id, s.username, s.total_bets, s.total_staked, s.total_winnings,
                s.total_losses, s.total_predictions, s.correct_predictions,
                s.prediction_accuracy, s.prediction_points, now,
            )
        )


def get_historical_user_stats(conn: sqlite3.Connection, user_id: str) -> Optional[HistoricalUserStats]:
    cursor = conn.execute("SELECT * FROM historical_user_stats WHERE user_id = ?", (user_id,))
    row = cursor.fetchone()
    if row is None:
        return None
    return HistoricalUserStats(
        user_id=row["user_id"],
        username=row["username"],
        total_bets=row["total_bets"],
        total_staked=row["total_staked"],
        total_winnings=row["total_winnings"],
        total_losses=row["total_losses"],
        total_predictions=row["total_predictions"],
        correct_predictions=row["correct_predictions"],
        prediction_accuracy=row["prediction_accuracy"],
        prediction_points=row["prediction_points"],
    )


# Clock state operations
def load_clock_state(conn: sqlite3.Connection) -> Optional[ClockState]:
    cursor = conn.execute("SELECT * FROM clock_state WHERE id = ?", (CLOCK_ROW_ID,))
    row = cursor.fetchone()
    if row is None:
        return None
    return ClockState(
        current_time=_dt(row["current_time"]),
        speed=row["speed"] or "medium",
        auto_mode=bool(row["auto_mode"]),
        last_update=_dt(row["last_update"]),
        active_season_id=row["active_season_id"],
    )


def save_clock_state(conn: sqlite3.Connection, state: ClockState) -> None:
    conn.execute(
        """
        INSERT OR REPLACE INTO clock_state (id, current_time, speed, auto_mode, last_update, active_season_id)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            CLOCK_ROW_ID, state.current_time.isoformat(), state.speed,
            1 if state.auto_mode else 0, _iso(state.last_update), state.active_season_id,
        )
    )


def delete_clock_state(conn: sqlite3.Connection) -> None:
    conn.execute("DELETE FROM clock_state WHERE id = ?", (CLOCK_ROW_ID,))


# Analysis queries
def get_season_match_counts(conn: sqlite3.Connection, season_id: str) -> Dict[str, int]:
    """Count a season's matches by status."""
    cursor = conn.execute(
        """
        SELECT
            COUNT(*) as total,
            COUNT(CASE WHEN status = 'finished' THEN 1 END) as finished,
            COUNT(CASE WHEN status = 'scheduled' THEN 1 END) as scheduled,
            COUNT(CASE WHEN status = 'live' THEN 1 END) as live
        FROM matches WHERE season_id = ?
        """,
        (season_id,)
    )
    return dict(cursor.fetchone())


def get_season_wager_totals(conn: sqlite3.Connection, season_id: str) -> Dict[str, float]:
    """Total wagers and total stakes placed on a season's matches."""
    cursor = conn.execute(
        """
        SELECT COUNT(*) as total, COALESCE(SUM(w.stake), 0) as revenue
        FROM wagers w
        JOIN matches m ON w.match_id = m.id
        WHERE m.season_id = ?
        """,
        (season_id,)
    )
    return dict(cursor.fetchone())


def get_season_forecast_count(conn: sqlite3.Connection, season_id: str) -> int:
    cursor = conn.execute(
        """
        SELECT COUNT(*) as total
        FROM forecasts f
        JOIN matches m ON f.match_id = m.id
        WHERE m.season_id = ?
        """,
        (season_id,)
    )
    return cursor.fetchone()["total"]


def get_user_wager_totals(conn: sqlite3.Connection) -> List[dict]:
    """Per-user wager aggregates over all time."""
    cursor = conn.execute(
        """
        SELECT
            u.id as user_id,
            u.username,
            COUNT(w.id) as total_bets,
            COALESCE(SUM(w.stake), 0) as total_staked,
            COALESCE(SUM(CASE WHEN w.status = 'won' THEN w.potential_payout - w.stake ELSE 0 END), 0) as total_winnings,
            COALESCE(SUM(CASE WHEN w.status = 'lost' THEN w.stake ELSE 0 END), 0) as total_losses
        FROM users u
        LEFT JOIN wagers w ON w.user_id = u.id AND w.status != 'cancelled'
        GROUP BY u.id, u.username
        ORDER BY u.username
        """
    )
    return [dict(row) for row in cursor.fetchall()]


def get_user_forecast_totals(conn: sqlite3.Connection) -> Dict[str, dict]:
    """Per-user forecast aggregates over all time, keyed by user id."""
    cursor = conn.execute(
        """
        SELECT
            user_id,
            COUNT(*) as total_predictions,
            COUNT(CASE WHEN status = 'correct' THEN 1 END) as correct_predictions,
            COUNT(CASE WHEN status != 'pending' THEN 1 END) as resolved_predictions,
            COALESCE(SUM(points), 0) as prediction_points
        FROM forecasts
        GROUP BY user_id
        """
    )
    return {row["user_id"]: dict(row) for row in cursor.fetchall()}

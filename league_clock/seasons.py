"""Season lifecycle: fixtures, activation, completion and archiving."""
import logging
import random
import sqlite3
from datetime import datetime, time, timedelta
from typing import List, Optional, Sequence, Tuple

from .config import KICKOFF_HOURS, MIN_TEAMS_FOR_SEASON, ODDS_BOUNDS, SEASON_DURATION_DAYS
from .database import (
    enroll_team,
    get_all_teams,
    get_season_match_counts,
    get_seasons_by_status,
    insert_match,
    insert_season,
    new_id,
    replace_standings,
    require_season,
    require_team,
    transaction,
    update_season_status,
)
from .history import archive_season
from .models import HistoricalSeasonRecord, Match, MatchOdds, Season
from .standings import compute_table

logger = logging.getLogger(__name__)


def round_robin(team_ids: Sequence[str]) -> List[List[Tuple[str, str]]]:
    """Double round-robin rounds using the circle method.

    Every ordered pair of teams meets exactly once; the second half of the
    schedule mirrors the first with home and away swapped.
    """
    teams: List[Optional[str]] = list(team_ids)
    if len(teams) < 2:
        return []
    if len(teams) % 2:
        teams.append(None)  # bye

    n = len(teams)
    first_half = []
    for r in range(n - 1):
        pairs = []
        for i in range(n // 2):
            a, b = teams[i], teams[n - 1 - i]
            if a is None or b is None:
                continue
            # Alternate home side so no team is always home in the first half
            pairs.append((a, b) if (r + i) % 2 == 0 else (b, a))
        first_half.append(pairs)
        # Keep the first team fixed, rotate the rest
        teams = [teams[0], teams[-1]] + teams[1:-1]

    second_half = [[(away, home) for home, away in pairs] for pairs in first_half]
    return first_half + second_half


def random_odds(rng: random.Random) -> MatchOdds:
    values = {
        name: round(rng.uniform(low, high), 2) for name, (low, high) in ODDS_BOUNDS.items()
    }
    return MatchOdds(**values)


def schedule_fixtures(
    season_id: str,
    rounds: List[List[Tuple[str, str]]],
    start_date: datetime,
    end_date: datetime,
    rng: random.Random
) -> List[Match]:
    """Spread fixtures evenly over the season, cycling kickoff hours."""
    fixtures = [pair for pairs in rounds for pair in pairs]
    if not fixtures:
        return []

    days = max(1, (end_date - start_date).days)
    base = datetime.combine(start_date.date(), time.min)
    matches = []
    for k, (home_id, away_id) in enumerate(fixtures):
        day = k * days // len(fixtures)
        kickoff = base + timedelta(days=day, hours=KICKOFF_HOURS[k % len(KICKOFF_HOURS)])
        matches.append(Match(
            id=new_id(),
            season_id=season_id,
            home_team_id=home_id,
            away_team_id=away_id,
            scheduled_at=kickoff,
            odds=random_odds(rng),
        ))
    return matches


def create_season(
    conn: sqlite3.Connection,
    name: str,
    start_date: datetime,
    end_date: Optional[datetime] = None,
    team_ids: Optional[Sequence[str]] = None,
    rng: Optional[random.Random] = None
) -> Season:
    """Create an upcoming season with enrolled teams, fixtures and empty standings.

    Seasons start at midnight of ``start_date``. All teams are enrolled when
    ``team_ids`` is not given.
    """
    rng = rng or random.Random()
    start_date = datetime.combine(start_date.date(), time.min)
    end_date = end_date or start_date + timedelta(days=SEASON_DURATION_DAYS)
    if end_date <= start_date:
        raise ValueError("Season must end after it starts")

    if team_ids is None:
        team_ids = [team.id for team in get_all_teams(conn)]
    else:
        for team_id in team_ids:
            require_team(conn, team_id)
    if len(team_ids) < 2:
        raise ValueError("A season needs at least two teams")

    season = Season(id=new_id(), name=name, start_date=start_date, end_date=end_date)
    matches = schedule_fixtures(season.id, round_robin(team_ids), start_date, end_date, rng)

    with transaction(conn):
        insert_season(conn, season)
        for team_id in team_ids:
            enroll_team(conn, season.id, team_id)
        for match in matches:
            insert_match(conn, match)
        replace_standings(conn, season.id, compute_table(season.id, team_ids, []))

    logger.info(f"Created {name}: {len(team_ids)} teams, {len(matches)} matches")
    return season


def get_active_season(conn: sqlite3.Connection) -> Optional[Season]:
    active = get_seasons_by_status(conn, "active")
    return active[0] if active else None


def activate_season(conn: sqlite3.Connection, season_id: str) -> Season:
    """Make a season the only active one, retiring and archiving the others."""
    season = require_season(conn, season_id)
    if season.status == "finished":
        raise ValueError(f"Season {season.name} is already finished")

    retired = []
    with transaction(conn):
        for other in get_seasons_by_status(conn, "active"):
            if other.id != season.id:
                update_season_status(conn, other.id, "finished")
                retired.append(other)
        update_season_status(conn, season.id, "active")

    for other in retired:
        logger.info(f"Retired season {other.name}")
        archive_season(conn, other.id)

    season.status = "active"
    logger.info(f"Activated {season.name}")
    return season


def finish_season_if_complete(conn: sqlite3.Connection, season_id: str) -> Optional[HistoricalSeasonRecord]:
    """Finish and archive a season once none of its matches is left to play."""
    season = require_season(conn, season_id)
    counts = get_season_match_counts(conn, season_id)
    if counts["total"] == 0 or counts["scheduled"] + counts["live"] > 0:
        return None

    if season.status != "finished":
        with transaction(conn):
            update_season_status(conn, season_id, "finished")
        logger.info(f"{season.name} complete after {counts['finished']} matches")

    return archive_season(conn, season_id)


def generate_season(conn: sqlite3.Connection, now: datetime, rng: Optional[random.Random] = None) -> Optional[Season]:
    """Create and activate a season starting the day after ``now``.

    Does nothing while another season is active or too few teams exist.
    """
    if get_active_season(conn):
        return None
    teams = get_all_teams(conn)
    if len(teams) < MIN_TEAMS_FOR_SEASON:
        logger.debug(f"Only {len(teams)} teams, need {MIN_TEAMS_FOR_SEASON} for a season")
        return None

    start = now + timedelta(days=1)
    season = create_season(conn, f"Season {start.year}", start, rng=rng)
    return activate_season(conn, season.id)

"""Shared fixtures: an in-memory league with four teams and two users."""
import random
from datetime import datetime
from typing import List

import pytest

from league_clock.database import (
    get_connection,
    get_season_matches,
    init_database,
    insert_team,
    insert_user,
    transaction,
)
from league_clock.models import Match, MatchResult, Team
from league_clock.seasons import activate_season, create_season

TEAM_PROFILES = [
    Team(id="gryffindor", name="Gryffindor", attack=85, defense=80, keeper=82, seeker=90, chaser=88, beater=84),
    Team(id="slytherin", name="Slytherin", attack=88, defense=85, keeper=80, seeker=85, chaser=86, beater=90),
    Team(id="ravenclaw", name="Ravenclaw", attack=80, defense=82, keeper=85, seeker=88, chaser=84, beater=78),
    Team(id="hufflepuff", name="Hufflepuff", attack=75, defense=88, keeper=86, seeker=78, chaser=76, beater=80),
]

SEASON_START = datetime(2025, 7, 15)


@pytest.fixture
def conn():
    conn = get_connection(":memory:")
    init_database(conn)
    yield conn
    conn.close()


@pytest.fixture
def teams(conn) -> List[Team]:
    created = []
    with transaction(conn):
        for profile in TEAM_PROFILES:
            team = Team(**vars(profile))
            insert_team(conn, team)
            created.append(team)
    return created


@pytest.fixture
def users(conn, teams) -> List[str]:
    with transaction(conn):
        return [
            insert_user(conn, "alice", 1000.0, user_id="alice"),
            insert_user(conn, "bob", 1000.0, user_id="bob"),
        ]


@pytest.fixture
def make_season(conn, teams):
    """Create (and by default activate) a seeded double round-robin season."""
    def _make(name="Season 2025", start=SEASON_START, team_ids=None, activate=True, seed=1):
        season = create_season(conn, name, start, team_ids=team_ids, rng=random.Random(seed))
        if activate:
            season = activate_season(conn, season.id)
        return season
    return _make


@pytest.fixture
def season(make_season):
    return make_season()


@pytest.fixture
def fixtures(conn, season) -> List[Match]:
    """The season's matches in kickoff order."""
    return get_season_matches(conn, season.id)


def final(home: int, away: int, duration: int = 60, catch_side=None) -> MatchResult:
    """A manually supplied result without an event log."""
    return MatchResult(
        home_score=home,
        away_score=away,
        duration=duration,
        special_catch=catch_side is not None,
        catch_side=catch_side,
    )


@pytest.fixture
def result():
    return final

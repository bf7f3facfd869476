"""Tests for fixtures generation and the season lifecycle."""
import random
from collections import Counter
from datetime import datetime, timedelta

import pytest

from league_clock.config import ODDS_BOUNDS, SEASON_DURATION_DAYS
from league_clock.database import (
    get_historical_season,
    get_season_matches,
    get_season_team_ids,
    get_standings,
    insert_team,
    require_season,
    transaction,
)
from league_clock.models import Team
from league_clock.seasons import (
    create_season,
    finish_season_if_complete,
    generate_season,
    get_active_season,
    round_robin,
)
from league_clock.settlement import finalize_match

from conftest import TEAM_PROFILES


class TestRoundRobin:
    @pytest.mark.parametrize("size", [2, 4, 5, 6])
    def test_every_ordered_pair_once(self, size):
        teams = [f"t{i}" for i in range(size)]
        pairs = [pair for rnd in round_robin(teams) for pair in rnd]

        assert len(pairs) == size * (size - 1)
        assert set(pairs) == {(a, b) for a in teams for b in teams if a != b}

    def test_each_team_plays_at_most_once_per_round(self):
        for rnd in round_robin([f"t{i}" for i in range(6)]):
            seen = Counter(team for pair in rnd for team in pair)
            assert max(seen.values()) == 1

    def test_too_few_teams(self):
        assert round_robin(["solo"]) == []


class TestCreateSeason:
    def test_creates_upcoming_season_with_fixtures(self, conn, teams):
        start = datetime(2025, 7, 15)
        season = create_season(conn, "Season 2025", start, rng=random.Random(3))

        assert season.status == "upcoming"
        assert season.end_date == start + timedelta(days=SEASON_DURATION_DAYS)
        assert len(get_season_team_ids(conn, season.id)) == 4

        matches = get_season_matches(conn, season.id)
        assert len(matches) == 12
        assert Counter((m.home_team_id, m.away_team_id) for m in matches).most_common(1)[0][1] == 1
        for match in matches:
            assert match.status == "scheduled"
            assert season.start_date <= match.scheduled_at <= season.end_date

    def test_fixtures_spread_over_season(self, conn, teams):
        season = create_season(conn, "Season 2025", datetime(2025, 7, 15), rng=random.Random(3))
        matches = get_season_matches(conn, season.id)
        span = matches[-1].scheduled_at - matches[0].scheduled_at
        assert span > timedelta(days=SEASON_DURATION_DAYS // 2)

    def test_odds_within_bounds(self, conn, teams):
        season = create_season(conn, "Season 2025", datetime(2025, 7, 15), rng=random.Random(9))
        for match in get_season_matches(conn, season.id):
            for name, (low, high) in ODDS_BOUNDS.items():
                assert low <= getattr(match.odds, name) <= high

    def test_zeroed_standings(self, conn, teams):
        season = create_season(conn, "Season 2025", datetime(2025, 7, 15))
        rows = get_standings(conn, season.id)
        assert len(rows) == 4
        assert all(row.points == 0 and row.matches_played == 0 for row in rows)
        assert sorted(row.position for row in rows) == [1, 2, 3, 4]

    def test_subset_of_teams(self, conn, teams):
        season = create_season(conn, "Cup", datetime(2025, 7, 15), team_ids=[teams[0].id, teams[1].id])
        assert len(get_season_matches(conn, season.id)) == 2

    def test_rejects_single_team(self, conn, teams):
        with pytest.raises(ValueError):
            create_season(conn, "Solo", datetime(2025, 7, 15), team_ids=[teams[0].id])


class TestLifecycle:
    def test_activate_retires_previous_season(self, conn, make_season):
        old = make_season(name="Season 2025")
        new = make_season(name="Season 2026", start=datetime(2026, 1, 5))

        assert get_active_season(conn).id == new.id
        assert require_season(conn, old.id).status == "finished"
        assert get_historical_season(conn, old.id) is not None

    def test_finish_waits_for_last_match(self, conn, season, fixtures, result):
        for match in fixtures[:-1]:
            finalize_match(conn, match.id, result(100, 50))
        assert finish_season_if_complete(conn, season.id) is None
        assert require_season(conn, season.id).status == "active"

        finalize_match(conn, fixtures[-1].id, result(100, 50))
        assert require_season(conn, season.id).status == "finished"
        assert get_active_season(conn) is None

    def test_generate_needs_enough_teams(self, conn):
        with transaction(conn):
            for profile in TEAM_PROFILES[:3]:
                insert_team(conn, Team(**vars(profile)))
        assert generate_season(conn, datetime(2025, 7, 14)) is None

    def test_generate_starts_next_day(self, conn, teams):
        season = generate_season(conn, datetime(2025, 7, 14, 9, 30), rng=random.Random(1))

        assert season.status == "active"
        assert season.name == "Season 2025"
        assert season.start_date == datetime(2025, 7, 15)
        assert season.end_date == datetime(2025, 7, 15) + timedelta(days=SEASON_DURATION_DAYS)

    def test_generate_skips_while_active(self, conn, season):
        assert generate_season(conn, datetime(2025, 7, 14)) is None

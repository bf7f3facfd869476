"""Tests for match finalization and its settlement stages."""
import random
import threading

import pytest

from league_clock import settlement
from league_clock.database import (
    NotFoundError,
    get_connection,
    get_ledger_for_user,
    get_match_events,
    get_standings,
    get_user,
    get_wager,
    init_database,
    insert_team,
    insert_user,
    require_match,
    require_team,
    transaction,
)
from league_clock.forecasts import submit_forecast
from league_clock.models import Team
from league_clock.seasons import activate_season, create_season
from league_clock.settlement import finalize_match, reset_match
from league_clock.simulator import simulate_match
from league_clock.wagers import place_wager

from conftest import SEASON_START, TEAM_PROFILES


class TestFinalizeMatch:
    """A match is finalized exactly once."""

    def test_writes_result_and_marks_consolidated(self, conn, fixtures, result):
        match = fixtures[0]
        report = finalize_match(conn, match.id, result(170, 90, duration=55, catch_side="home"))

        assert report.finalized
        settled = require_match(conn, match.id)
        assert settled.status == "finished"
        assert settled.consolidated
        assert (settled.home_score, settled.away_score, settled.duration) == (170, 90, 55)
        assert settled.special_catch
        assert settled.catch_team_id == match.home_team_id

    def test_updates_team_records(self, conn, fixtures, result):
        match = fixtures[0]
        finalize_match(conn, match.id, result(170, 90, catch_side="home"))

        home = require_team(conn, match.home_team_id)
        away = require_team(conn, match.away_team_id)
        assert (home.matches_played, home.wins, home.losses, home.draws) == (1, 1, 0, 0)
        assert (away.matches_played, away.wins, away.losses, away.draws) == (1, 0, 1, 0)
        assert (home.points_for, home.points_against, home.special_catches) == (170, 90, 1)
        assert (away.points_for, away.points_against, away.special_catches) == (90, 170, 0)

    def test_equal_scores_are_a_draw_for_both(self, conn, fixtures, result):
        match = fixtures[0]
        finalize_match(conn, match.id, result(100, 100))
        assert require_team(conn, match.home_team_id).draws == 1
        assert require_team(conn, match.away_team_id).draws == 1

    def test_second_call_is_a_no_op(self, conn, fixtures, users, result):
        """Finalizing twice leaves records, standings and balances as after one call."""
        match = fixtures[0]
        place_wager(conn, "alice", match.id, 100, kind="winner-home", odds=2.0)

        finalize_match(conn, match.id, result(170, 90))
        team = require_team(conn, match.home_team_id)
        table = get_standings(conn, match.season_id)
        balance = get_user(conn, "alice").balance

        report = finalize_match(conn, match.id, result(10, 200))

        assert not report.finalized
        assert require_team(conn, match.home_team_id) == team
        assert get_standings(conn, match.season_id) == table
        assert get_user(conn, "alice").balance == balance
        assert require_match(conn, match.id).home_score == 170

    def test_missing_match_raises(self, conn, season, result):
        with pytest.raises(NotFoundError):
            finalize_match(conn, "no-such-match", result(10, 0))

    def test_catch_without_side_is_rejected(self, conn, fixtures, result):
        bad = result(160, 10)
        bad.special_catch = True
        with pytest.raises(ValueError):
            finalize_match(conn, fixtures[0].id, bad)
        assert require_match(conn, fixtures[0].id).status == "scheduled"

    def test_event_log_replaced(self, conn, fixtures, teams):
        match = fixtures[0]
        home = require_team(conn, match.home_team_id)
        away = require_team(conn, match.away_team_id)

        first = simulate_match(home, away, match.id, rng=random.Random(1))
        finalize_match(conn, match.id, first)
        assert len(get_match_events(conn, match.id)) == len(first.events)

        reset_match(conn, match.id)
        assert get_match_events(conn, match.id) == []

        second = simulate_match(home, away, match.id, rng=random.Random(99))
        finalize_match(conn, match.id, second)
        events = get_match_events(conn, match.id)
        assert len(events) == len(second.events)
        assert sorted(e.id for e in events) == sorted(e.id for e in second.events)

    def test_standings_recomputed(self, conn, fixtures, result):
        match = fixtures[0]
        finalize_match(conn, match.id, result(170, 90))
        table = {row.team_id: row for row in get_standings(conn, match.season_id)}
        assert table[match.home_team_id].points == 3
        assert table[match.home_team_id].position == 1
        assert table[match.away_team_id].points == 0


class TestStageIsolation:
    """A failing stage is reported without undoing the result or later stages."""

    def test_wager_stage_failure_is_reported(self, conn, fixtures, users, result, monkeypatch):
        match = fixtures[0]
        submit_forecast(conn, "alice", match.id, "home", 5)

        def broken(conn, match_id):
            raise RuntimeError("ledger offline")

        monkeypatch.setattr(settlement, "resolve_wagers_for_match", broken)
        report = finalize_match(conn, match.id, result(170, 90))

        assert report.finalized
        assert [(e.stage, e.ref_id) for e in report.errors] == [("wagers", match.id)]
        assert "ledger offline" in report.errors[0].message
        assert require_match(conn, match.id).status == "finished"
        assert report.forecasts.correct == 1
        assert report.standings_updated

    def test_standings_failure_does_not_block_season_check(self, conn, fixtures, result, monkeypatch):
        calls = []

        def broken(conn, season_id):
            raise RuntimeError("boom")

        def recording(conn, season_id):
            calls.append(season_id)

        monkeypatch.setattr(settlement, "recalculate_standings", broken)
        monkeypatch.setattr(settlement, "finish_season_if_complete", recording)
        report = finalize_match(conn, fixtures[0].id, result(10, 20))

        assert [e.stage for e in report.errors] == ["standings"]
        assert calls == [fixtures[0].season_id]


class TestResetMatch:
    def test_reverses_team_records_and_standings(self, conn, fixtures, result):
        match = fixtures[0]
        finalize_match(conn, match.id, result(170, 90, catch_side="home"))
        reopened = reset_match(conn, match.id)

        assert reopened.status == "scheduled"
        assert not reopened.consolidated
        home = require_team(conn, match.home_team_id)
        assert (home.matches_played, home.wins, home.points_for, home.special_catches) == (0, 0, 0, 0)
        assert all(row.points == 0 for row in get_standings(conn, match.season_id))

    def test_only_finished_matches(self, conn, fixtures):
        with pytest.raises(ValueError):
            reset_match(conn, fixtures[0].id)

    def test_can_finalize_again(self, conn, fixtures, result):
        match = fixtures[0]
        finalize_match(conn, match.id, result(170, 90))
        reset_match(conn, match.id)
        report = finalize_match(conn, match.id, result(20, 40))

        assert report.finalized
        assert require_team(conn, match.away_team_id).wins == 1
        assert require_team(conn, match.home_team_id).wins == 0


class TestConcurrentFinalize:
    """Two connections racing on the same match settle it once."""

    def test_double_finalize_settles_once(self, tmp_path, result):
        db_path = tmp_path / "race.db"
        setup = get_connection(db_path)
        init_database(setup)
        with transaction(setup):
            for profile in TEAM_PROFILES:
                insert_team(setup, Team(**vars(profile)))
            insert_user(setup, "alice", 1000.0, user_id="alice")
        season = create_season(setup, "Race", SEASON_START, rng=random.Random(1))
        activate_season(setup, season.id)
        match_id = setup.execute(
            "SELECT id FROM matches ORDER BY scheduled_at, id LIMIT 1"
        ).fetchone()["id"]
        wager = place_wager(setup, "alice", match_id, 100, kind="winner-home", odds=2.0)

        barrier = threading.Barrier(2)
        reports = []
        failures = []

        def worker():
            conn = get_connection(db_path)
            try:
                barrier.wait()
                reports.append(finalize_match(conn, match_id, result(170, 90)))
            except Exception as e:
                failures.append(e)
            finally:
                conn.close()

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert failures == []
        assert sorted(r.finalized for r in reports) == [False, True]

        match = require_match(setup, match_id)
        home = require_team(setup, match.home_team_id)
        assert home.matches_played == 1
        assert home.wins == 1
        assert get_wager(setup, wager.id).status == "won"
        assert get_user(setup, "alice").balance == 1100.0
        assert [e.kind for e in get_ledger_for_user(setup, "alice")] == ["bet_placed", "bet_won"]
        setup.close()

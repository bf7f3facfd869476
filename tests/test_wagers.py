"""Tests for wager predicates, placement and resolution."""
import json
from datetime import datetime

import pytest

from league_clock.database import (
    get_ledger_for_user,
    get_user,
    get_wager,
    insert_wager,
    new_id,
    require_match,
    transaction,
)
from league_clock.models import Match, Wager, WagerLeg
from league_clock.settlement import finalize_match
from league_clock.wagers import (
    CatchPick,
    DurationLine,
    DurationRange,
    ExactScore,
    LegacyRaw,
    Malformed,
    MarginLine,
    TotalPoints,
    WinnerPick,
    cancel_wager,
    evaluate,
    parse_legacy,
    place_wager,
    predicate_from_kind,
    resolve_pending_combined,
    resolve_wagers_for_match,
)


def finished(home, away, duration=60, catch_team_id=None):
    return Match(
        id="m1",
        season_id="s1",
        home_team_id="h",
        away_team_id="a",
        scheduled_at=datetime(2025, 8, 1, 14),
        status="finished",
        home_score=home,
        away_score=away,
        special_catch=catch_team_id is not None,
        catch_team_id=catch_team_id,
        duration=duration,
        consolidated=True,
    )


class TestRegistryKinds:
    def test_known_kinds(self):
        assert predicate_from_kind("winner-draw") == WinnerPick("draw")
        assert predicate_from_kind("special-catch-none") == CatchPick(None)
        assert predicate_from_kind("total-over", 300) == TotalPoints("over", 300.0)
        assert predicate_from_kind("duration-under", 45) == DurationLine("under", 45.0)
        assert predicate_from_kind("margin-over", 50) == MarginLine("over", 50.0)
        assert predicate_from_kind("exact-score", selection="150-90") == ExactScore(150, 90)

    def test_unknown_kind_raises(self):
        with pytest.raises(ValueError):
            predicate_from_kind("first-goal-home")

    def test_line_required(self):
        with pytest.raises(ValueError):
            predicate_from_kind("total-over")

    def test_bad_exact_selection(self):
        with pytest.raises(ValueError):
            predicate_from_kind("exact-score", selection="lots")


class TestLegacyParsing:
    """Free-text categories map onto the same predicates."""

    @pytest.mark.parametrize("category,prediction,expected", [
        ("winner", "home", WinnerPick("home")),
        ("winner", "A", WinnerPick("away")),
        ("total_score", "over_300", TotalPoints("over", 300.0)),
        ("total", "under 250", TotalPoints("under", 250.0)),
        ("snitch_catcher", "h", CatchPick("home")),
        ("special_catch", "none", CatchPick(None)),
        ("match_duration", "over_90", DurationLine("over", 90.0)),
        ("time", "30-60", DurationRange(30, 60)),
        ("time", "between_30_60", DurationRange(30, 60)),
        ("score", "150-90", ExactScore(150, 90)),
        ("exact_score", " 150 - 90 ", ExactScore(150, 90)),
        ("score", "exact", ExactScore()),
        ("margin", "under_20", MarginLine("under", 20.0)),
    ])
    def test_parses(self, category, prediction, expected):
        assert parse_legacy(category, prediction, "h", "a") == expected

    @pytest.mark.parametrize("category,prediction", [
        ("winner", "banana"),
        ("total_score", "lots"),
        ("time", "60-30"),
        ("score", "???"),
        ("score", "150:90"),
        ("exact_score", "150 to 90"),
        ("weather", "sunny"),
        ("winner", ""),
    ])
    def test_unreadable_is_malformed(self, category, prediction):
        assert isinstance(parse_legacy(category, prediction, "h", "a"), Malformed)


class TestEvaluate:
    def test_total_over_is_strict(self):
        match = finished(190, 170)
        assert evaluate(TotalPoints("over", 300), match).won
        assert not evaluate(TotalPoints("over", 400), match).won
        assert not evaluate(TotalPoints("over", 360), match).won
        assert not evaluate(TotalPoints("under", 360), match).won

    def test_exact_score(self):
        assert evaluate(ExactScore(150, 90), finished(150, 90)).won
        assert not evaluate(ExactScore(150, 90), finished(150, 91)).won

    def test_bare_exact_always_loses(self):
        outcome = evaluate(LegacyRaw("score", "exact"), finished(150, 90))
        assert not outcome.won
        assert "without a score" in outcome.reason

    def test_malformed_loses_with_reason(self):
        outcome = evaluate(LegacyRaw("winner", "banana"), finished(150, 90))
        assert not outcome.won
        assert "banana" in outcome.reason

    def test_catch_and_duration(self):
        match = finished(200, 40, duration=45, catch_team_id="a")
        assert evaluate(CatchPick("away"), match).won
        assert not evaluate(CatchPick(None), match).won
        assert evaluate(DurationRange(30, 45), match).won
        assert evaluate(LegacyRaw("snitch", "a"), match).won
        assert evaluate(MarginLine("over", 150), match).won

    def test_no_catch(self):
        assert evaluate(CatchPick(None), finished(50, 40)).won

    def test_winner(self):
        assert evaluate(WinnerPick("draw"), finished(90, 90)).won
        assert evaluate(LegacyRaw("winner", "H"), finished(100, 90)).won


class TestPlacement:
    def test_deducts_stake_and_writes_ledger(self, conn, fixtures, users):
        match = fixtures[0]
        wager = place_wager(conn, "alice", match.id, 100, kind="winner-home")

        assert wager.odds == match.odds.home_win
        assert wager.potential_payout == round(100 * match.odds.home_win, 2)
        assert get_user(conn, "alice").balance == 900.0
        entry = get_ledger_for_user(conn, "alice")[0]
        assert (entry.kind, entry.amount, entry.balance_before, entry.balance_after) == ("bet_placed", -100.0, 1000.0, 900.0)

    def test_rejects_bad_stakes(self, conn, fixtures, users):
        with pytest.raises(ValueError):
            place_wager(conn, "alice", fixtures[0].id, 0, kind="winner-home")
        with pytest.raises(ValueError):
            place_wager(conn, "alice", fixtures[0].id, 5000, kind="winner-home")
        assert get_user(conn, "alice").balance == 1000.0

    def test_rejects_unknown_kind(self, conn, fixtures, users):
        with pytest.raises(ValueError):
            place_wager(conn, "alice", fixtures[0].id, 10, kind="first-goal-home", odds=2.0)

    def test_legacy_needs_odds(self, conn, fixtures, users):
        with pytest.raises(ValueError):
            place_wager(conn, "alice", fixtures[0].id, 10, category="total_score", prediction="over_300")

    def test_closed_after_kickoff(self, conn, fixtures, users, result):
        finalize_match(conn, fixtures[0].id, result(100, 90))
        with pytest.raises(ValueError):
            place_wager(conn, "alice", fixtures[0].id, 10, kind="winner-home")

    def test_cancel_refunds(self, conn, fixtures, users):
        wager = place_wager(conn, "alice", fixtures[0].id, 100, kind="winner-home")
        cancel_wager(conn, wager.id)

        assert get_wager(conn, wager.id).status == "cancelled"
        assert get_user(conn, "alice").balance == 1000.0
        assert [e.kind for e in get_ledger_for_user(conn, "alice")] == ["bet_placed", "refund"]
        with pytest.raises(ValueError):
            cancel_wager(conn, wager.id)


class TestResolution:
    """Scenarios settled through match finalization."""

    def test_total_over_scenario(self, conn, fixtures, users, result):
        match = fixtures[0]
        low = place_wager(conn, "alice", match.id, 100, kind="total-over", line=300, odds=2.0)
        high = place_wager(conn, "bob", match.id, 100, kind="total-over", line=400, odds=2.0)

        finalize_match(conn, match.id, result(190, 170))

        assert get_wager(conn, low.id).status == "won"
        assert get_wager(conn, high.id).status == "lost"
        assert get_user(conn, "alice").balance == 1100.0
        assert get_user(conn, "bob").balance == 900.0

    def test_exact_score_scenario(self, conn, fixtures, users, result):
        first, second = fixtures[0], fixtures[1]
        hit = place_wager(conn, "alice", first.id, 10, kind="exact-score", selection="150-90", odds=20.0)
        miss = place_wager(conn, "alice", second.id, 10, kind="exact-score", selection="150-90", odds=20.0)

        finalize_match(conn, first.id, result(150, 90))
        finalize_match(conn, second.id, result(150, 91))

        assert get_wager(conn, hit.id).status == "won"
        assert get_wager(conn, miss.id).status == "lost"

    def test_loss_writes_ledger_without_balance_change(self, conn, fixtures, users, result):
        match = fixtures[0]
        wager = place_wager(conn, "alice", match.id, 100, kind="winner-away", odds=2.5)
        finalize_match(conn, match.id, result(170, 90))

        lost = get_wager(conn, wager.id)
        assert lost.status == "lost"
        assert lost.resolved_at is not None
        assert get_user(conn, "alice").balance == 900.0
        entry = get_ledger_for_user(conn, "alice")[-1]
        assert entry.kind == "bet_lost"
        assert entry.balance_before == entry.balance_after == 900.0

    def test_legacy_wagers_resolve(self, conn, fixtures, users, result):
        match = fixtures[0]
        total = place_wager(conn, "alice", match.id, 10, category="total_score", prediction="over_300", odds=1.9)
        exact = place_wager(conn, "alice", match.id, 10, category="score", prediction="exact", odds=15.0)
        junk = place_wager(conn, "alice", match.id, 10, category="winner", prediction="banana", odds=2.0)

        report = finalize_match(conn, match.id, result(190, 170))

        assert get_wager(conn, total.id).status == "won"
        assert get_wager(conn, exact.id).status == "lost"
        assert get_wager(conn, junk.id).status == "lost"
        assert "malformed" in get_wager(conn, junk.id).reason
        assert report.errors == []

    def test_failing_wager_does_not_block_others(self, conn, fixtures, users, result):
        match = fixtures[0]
        good = place_wager(conn, "alice", match.id, 100, kind="winner-home", odds=2.0)
        bad = Wager(
            id=new_id(), user_id="bob", match_id=match.id, stake=10, odds=2.0,
            potential_payout=20, kind="first-goal-home",
        )
        with transaction(conn):
            insert_wager(conn, bad)

        report = finalize_match(conn, match.id, result(170, 90))

        assert get_wager(conn, good.id).status == "won"
        assert get_wager(conn, bad.id).status == "pending"
        assert [(e.stage, e.ref_id) for e in report.errors] == [("wagers", bad.id)]

    def test_resolution_is_idempotent(self, conn, fixtures, users, result):
        match = fixtures[0]
        place_wager(conn, "alice", match.id, 100, kind="winner-home", odds=2.0)
        finalize_match(conn, match.id, result(170, 90))

        stats = resolve_wagers_for_match(conn, match.id)

        assert (stats.won, stats.lost) == (0, 0)
        assert get_user(conn, "alice").balance == 1100.0


class TestCombinedWagers:
    """Won only when every leg holds, and only once every leg's match is finished."""

    def test_pending_until_all_legs_finished(self, conn, fixtures, users, result):
        first, second = fixtures[0], fixtures[1]
        wager = place_wager(conn, "alice", first.id, 50, odds=3.0, legs=[
            WagerLeg(match_id=first.id, kind="winner-home"),
            WagerLeg(match_id=second.id, kind="total-over", line=100),
        ])
        assert get_wager(conn, wager.id).legs[1].line == 100

        finalize_match(conn, first.id, result(170, 90))
        assert get_wager(conn, wager.id).status == "pending"

        finalize_match(conn, second.id, result(60, 70))
        assert get_wager(conn, wager.id).status == "won"
        assert get_user(conn, "alice").balance == 1100.0

    def test_rescan_covers_wagers_anchored_elsewhere(self, conn, fixtures, users, result):
        """Finishing the second leg's match settles a wager anchored on the first."""
        first, second = fixtures[0], fixtures[1]
        wager = place_wager(conn, "alice", second.id, 50, odds=3.0, legs=[
            WagerLeg(match_id=second.id, kind="winner-away"),
            WagerLeg(match_id=first.id, kind="winner-home"),
        ])

        finalize_match(conn, second.id, result(40, 170))
        assert get_wager(conn, wager.id).status == "pending"
        finalize_match(conn, first.id, result(170, 90))
        assert get_wager(conn, wager.id).status == "won"

    def test_one_false_leg_loses(self, conn, fixtures, users, result):
        first, second = fixtures[0], fixtures[1]
        wager = place_wager(conn, "alice", first.id, 50, odds=3.0, legs=[
            WagerLeg(match_id=first.id, kind="winner-home"),
            WagerLeg(match_id=second.id, category="total_score", prediction="over_500"),
        ])

        finalize_match(conn, first.id, result(170, 90))
        finalize_match(conn, second.id, result(60, 70))

        assert get_wager(conn, wager.id).status == "lost"
        assert get_user(conn, "alice").balance == 950.0

    def test_legacy_json_combined(self, conn, fixtures, users, result):
        match = fixtures[0]
        legs = [{"type": "winner", "value": "home"}, {"type": "total_score", "value": "over_300"}]
        wager = place_wager(
            conn, "alice", match.id, 20, odds=3.5, category="combined", prediction=json.dumps(legs),
        )

        finalize_match(conn, match.id, result(190, 170))

        assert get_wager(conn, wager.id).status == "won"

    def test_rescan_is_safe_to_repeat(self, conn, fixtures, users, result):
        first, second = fixtures[0], fixtures[1]
        place_wager(conn, "alice", first.id, 50, odds=3.0, legs=[
            WagerLeg(match_id=first.id, kind="winner-home"),
            WagerLeg(match_id=second.id, kind="winner-home"),
        ])
        finalize_match(conn, first.id, result(170, 90))

        stats = resolve_pending_combined(conn)
        assert (stats.won, stats.lost, stats.pending) == (0, 0, 1)
        assert require_match(conn, second.id).status == "scheduled"

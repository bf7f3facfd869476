"""Wager placement and resolution.

Every wager is reduced to one or more predicates evaluated against finished
matches. Predicates come from two formats:

- registry kinds such as ``winner-home`` or ``total-over`` with a numeric
  line, validated when the wager is placed;
- legacy free text (``category`` + ``prediction``, e.g. ``total_score`` /
  ``over_300``) kept for wagers written before kinds existed. Legacy text
  that cannot be understood resolves as a loss, it never raises.

Combined wagers hold several legs, possibly on different matches, and are
won only if every leg holds.
"""
import json
import logging
import re
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple, Union

from .database import (
    get_pending_combined_wagers,
    get_pending_single_wagers,
    insert_ledger_entry,
    insert_wager,
    mark_wager_resolved,
    new_id,
    require_match,
    require_user,
    require_wager,
    transaction,
    update_user_balance,
)
from .models import LedgerEntry, Match, StageFailure, Wager, WagerLeg

logger = logging.getLogger(__name__)


# Predicates
@dataclass(frozen=True)
class WinnerPick:
    side: str  # home, away, draw


@dataclass(frozen=True)
class CatchPick:
    side: Optional[str]  # home, away, or None for "no catch"


@dataclass(frozen=True)
class TotalPoints:
    direction: str  # over, under
    threshold: float


@dataclass(frozen=True)
class DurationLine:
    direction: str
    threshold: float


@dataclass(frozen=True)
class DurationRange:
    low: int
    high: int


@dataclass(frozen=True)
class MarginLine:
    direction: str
    threshold: float


@dataclass(frozen=True)
class ExactScore:
    home: Optional[int] = None  # None on both sides: bare "exact" with no score
    away: Optional[int] = None


@dataclass(frozen=True)
class Malformed:
    reason: str


@dataclass(frozen=True)
class LegacyRaw:
    category: str
    prediction: str


Predicate = Union[
    WinnerPick, CatchPick, TotalPoints, DurationLine, DurationRange,
    MarginLine, ExactScore, Malformed, LegacyRaw,
]


@dataclass
class Evaluation:
    won: bool
    reason: str


@dataclass
class ResolutionStats:
    won: int = 0
    lost: int = 0
    pending: int = 0
    failures: List[StageFailure] = field(default_factory=list)

    def merge(self, other: "ResolutionStats") -> None:
        self.won += other.won
        self.lost += other.lost
        self.pending += other.pending
        self.failures.extend(other.failures)


# Registry kinds
WINNER_KINDS = {"winner-home": "home", "winner-away": "away", "winner-draw": "draw"}
CATCH_KINDS = {"special-catch-home": "home", "special-catch-away": "away", "special-catch-none": None}
LINE_KINDS = {
    "total-over": (TotalPoints, "over"),
    "total-under": (TotalPoints, "under"),
    "duration-over": (DurationLine, "over"),
    "duration-under": (DurationLine, "under"),
    "margin-over": (MarginLine, "over"),
    "margin-under": (MarginLine, "under"),
}
EXACT_SCORE_KIND = "exact-score"
COMBINED = "combined"

# Which odds snapshot field quotes each kind
QUOTED_ODDS = {
    "winner-home": "home_win",
    "winner-away": "away_win",
    "winner-draw": "draw",
    "total-over": "total_over",
    "total-under": "total_under",
    "special-catch-home": "catch_home",
    "special-catch-away": "catch_away",
}

SCORE_PAIR = re.compile(r"^\s*(\d+)\s*-\s*(\d+)\s*$")


def predicate_from_kind(kind: str, line: Optional[float] = None, selection: Optional[str] = None) -> Predicate:
    """Build the predicate for a registry kind.

    Raises ValueError for unknown kinds or missing/invalid parameters.
    """
    if kind in WINNER_KINDS:
        return WinnerPick(WINNER_KINDS[kind])
    if kind in CATCH_KINDS:
        return CatchPick(CATCH_KINDS[kind])
    if kind in LINE_KINDS:
        if line is None:
            raise ValueError(f"Wager kind {kind} requires a line")
        cls, direction = LINE_KINDS[kind]
        return cls(direction, float(line))
    if kind == EXACT_SCORE_KIND:
        found = SCORE_PAIR.match(selection or "")
        if not found:
            raise ValueError(f"Exact-score selection must look like 'H-A', got {selection!r}")
        return ExactScore(int(found.group(1)), int(found.group(2)))
    raise ValueError(f"Unknown wager kind: {kind}")


# Legacy free-text parsing
LEGACY_WINNER = {"winner", "match_winner", "result"}
LEGACY_TOTAL = {"total_score", "total", "total_points"}
LEGACY_CATCH = {"snitch_catcher", "snitch", "special_catch"}
LEGACY_DURATION = {"match_duration", "time", "duration"}
LEGACY_SCORE = {"score", "exact_score"}
LEGACY_MARGIN = {"margin", "point_difference"}

LINE_TEXT = re.compile(r"^(over|under)[\s_:-]*(\d+(?:\.\d+)?)$")
RANGE_TEXT = re.compile(r"^(?:between[\s_]*)?(\d+)\s*(?:-|_|to|and)\s*(\d+)$")
NO_CATCH = {"none", "no", "no_catch", "nobody"}


def _parse_line(text: str, build, category: str) -> Predicate:
    found = LINE_TEXT.match(text)
    if not found:
        return Malformed(f"cannot read over/under line {text!r} for {category}")
    return build(found.group(1), float(found.group(2)))


def _parse_side(text: str, home_team_id: str, away_team_id: str) -> Optional[str]:
    if text in ("home", "away", "draw"):
        return text
    if text == home_team_id.lower():
        return "home"
    if text == away_team_id.lower():
        return "away"
    return None


def parse_legacy(category: str, prediction: str, home_team_id: str, away_team_id: str) -> Predicate:
    """Translate a legacy category/prediction pair into a predicate.

    Team references may be given as side names or as the team's id.
    """
    category = (category or "").strip().lower()
    text = (prediction or "").strip().lower()

    if not text:
        return Malformed(f"empty prediction for {category or 'unknown category'}")

    if category in LEGACY_WINNER:
        side = _parse_side(text, home_team_id, away_team_id)
        if side is None:
            return Malformed(f"unknown winner {prediction!r}")
        return WinnerPick(side)

    if category in LEGACY_TOTAL:
        return _parse_line(text, TotalPoints, category)

    if category in LEGACY_CATCH:
        if text in NO_CATCH:
            return CatchPick(None)
        side = _parse_side(text, home_team_id, away_team_id)
        if side is None or side == "draw":
            return Malformed(f"unknown catcher {prediction!r}")
        return CatchPick(side)

    if category in LEGACY_DURATION:
        if text.startswith(("over", "under")):
            return _parse_line(text, DurationLine, category)
        found = RANGE_TEXT.match(text)
        if not found:
            return Malformed(f"cannot read duration {prediction!r}")
        low, high = int(found.group(1)), int(found.group(2))
        if low > high:
            return Malformed(f"empty duration range {prediction!r}")
        return DurationRange(low, high)

    if category in LEGACY_SCORE:
        if text == "exact":
            return ExactScore()
        found = SCORE_PAIR.match(text)
        if found:
            return ExactScore(int(found.group(1)), int(found.group(2)))
        return Malformed(f"cannot read score {prediction!r}")

    if category in LEGACY_MARGIN:
        return _parse_line(text, MarginLine, category)

    return Malformed(f"unknown category {category!r}")


# Evaluation
def _compare(direction: str, value: float, threshold: float) -> bool:
    if direction == "over":
        return value > threshold
    if direction == "under":
        return value < threshold
    raise ValueError(f"Unknown direction: {direction}")


def evaluate(predicate: Predicate, match: Match) -> Evaluation:
    """Evaluate a predicate against a finished match."""
    if isinstance(predicate, LegacyRaw):
        parsed = parse_legacy(predicate.category, predicate.prediction, match.home_team_id, match.away_team_id)
        return evaluate(parsed, match)

    if isinstance(predicate, WinnerPick):
        return Evaluation(match.outcome == predicate.side, f"winner {predicate.side}, result {match.outcome}")

    if isinstance(predicate, CatchPick):
        actual = match.catch_side()
        return Evaluation(actual == predicate.side, f"catch {predicate.side or 'none'}, actual {actual or 'none'}")

    if isinstance(predicate, TotalPoints):
        total = match.home_score + match.away_score
        won = _compare(predicate.direction, total, predicate.threshold)
        return Evaluation(won, f"total {predicate.direction} {predicate.threshold:g}, actual {total}")

    if isinstance(predicate, DurationLine):
        duration = match.duration or 0
        won = _compare(predicate.direction, duration, predicate.threshold)
        return Evaluation(won, f"duration {predicate.direction} {predicate.threshold:g}, actual {duration}")

    if isinstance(predicate, DurationRange):
        duration = match.duration or 0
        won = predicate.low <= duration <= predicate.high
        return Evaluation(won, f"duration {predicate.low}-{predicate.high}, actual {duration}")

    if isinstance(predicate, MarginLine):
        margin = abs(match.home_score - match.away_score)
        won = _compare(predicate.direction, margin, predicate.threshold)
        return Evaluation(won, f"margin {predicate.direction} {predicate.threshold:g}, actual {margin}")

    if isinstance(predicate, ExactScore):
        actual = f"{match.home_score}-{match.away_score}"
        if predicate.home is None or predicate.away is None:
            return Evaluation(False, f"exact-score wager without a score, actual {actual}")
        won = predicate.home == match.home_score and predicate.away == match.away_score
        return Evaluation(won, f"score {predicate.home}-{predicate.away}, actual {actual}")

    if isinstance(predicate, Malformed):
        return Evaluation(False, f"malformed prediction: {predicate.reason}")

    raise TypeError(f"Unsupported predicate: {predicate!r}")


def leg_predicate(leg: WagerLeg) -> Predicate:
    if leg.kind:
        return predicate_from_kind(leg.kind, leg.line, leg.selection)
    if leg.category:
        return LegacyRaw(leg.category, leg.prediction or "")
    return Malformed("leg carries neither kind nor category")


def _legacy_combined_legs(match_id: str, prediction: Optional[str]) -> List[Tuple[str, Predicate]]:
    """Legacy combined wagers store a JSON list of {"type", "value"} on the anchor match."""
    try:
        items = json.loads(prediction or "")
    except ValueError:
        return [(match_id, Malformed("combined prediction is not valid JSON"))]
    if not isinstance(items, list) or not items:
        return [(match_id, Malformed("combined prediction has no legs"))]

    legs = []
    for item in items:
        if not isinstance(item, dict) or "type" not in item:
            legs.append((match_id, Malformed(f"unreadable combined leg {item!r}")))
            continue
        legs.append((match_id, LegacyRaw(str(item["type"]), str(item.get("value", "")))))
    return legs


def wager_predicates(wager: Wager) -> List[Tuple[str, Predicate]]:
    """The (match id, predicate) pairs that decide a wager."""
    if wager.kind == COMBINED:
        if not wager.legs:
            return [(wager.match_id, Malformed("combined wager without legs"))]
        return [(leg.match_id, leg_predicate(leg)) for leg in wager.legs]
    if wager.category and wager.category.strip().lower() == COMBINED:
        return _legacy_combined_legs(wager.match_id, wager.prediction)
    if wager.kind:
        return [(wager.match_id, predicate_from_kind(wager.kind, wager.line, wager.selection))]
    if wager.category:
        return [(wager.match_id, LegacyRaw(wager.category, wager.prediction or ""))]
    return [(wager.match_id, Malformed("wager carries neither kind nor category"))]


# Resolution
def resolve_wager(conn: sqlite3.Connection, wager: Wager, resolved_at: Optional[datetime] = None) -> Optional[str]:
    """Resolve one wager if every match it depends on is finished.

    Returns the new status, or None if the wager stays pending or was
    resolved concurrently.
    """
    legs = wager_predicates(wager)

    matches: Dict[str, Match] = {}
    for match_id, _ in legs:
        if match_id not in matches:
            matches[match_id] = require_match(conn, match_id)
        if matches[match_id].status != "finished":
            return None

    won = True
    reasons = []
    for match_id, predicate in legs:
        result = evaluate(predicate, matches[match_id])
        won = won and result.won
        reasons.append(result.reason)

    status = "won" if won else "lost"
    reason = "; ".join(reasons)
    resolved_at = resolved_at or datetime.now()

    with transaction(conn, immediate=True):
        if not mark_wager_resolved(conn, wager.id, status, reason, resolved_at):
            logger.debug(f"Wager {wager.id} already resolved, skipping")
            return None

        user = require_user(conn, wager.user_id)
        if won:
            balance_after = user.balance + wager.potential_payout
            update_user_balance(conn, user.id, balance_after)
            amount = wager.potential_payout
            description = f"Won wager {wager.id}: {reason}"
        else:
            balance_after = user.balance
            amount = 0.0
            description = f"Lost wager {wager.id} (stake {wager.stake:.2f}): {reason}"

        insert_ledger_entry(conn, LedgerEntry(
            id=new_id(),
            user_id=user.id,
            kind="bet_won" if won else "bet_lost",
            amount=amount,
            balance_before=user.balance,
            balance_after=balance_after,
            description=description,
            reference_id=wager.id,
            created_at=resolved_at,
        ))

    logger.debug(f"Wager {wager.id} {status}: {reason}")
    return status


def _resolve_all(conn: sqlite3.Connection, wagers: Sequence[Wager], stage: str) -> ResolutionStats:
    stats = ResolutionStats()
    for wager in wagers:
        try:
            status = resolve_wager(conn, wager)
        except Exception as e:
            logger.error(f"Error resolving wager {wager.id}: {e}")
            stats.failures.append(StageFailure(stage, wager.id, str(e)))
            continue
        if status == "won":
            stats.won += 1
        elif status == "lost":
            stats.lost += 1
        else:
            stats.pending += 1
    return stats


def resolve_wagers_for_match(conn: sqlite3.Connection, match_id: str) -> ResolutionStats:
    """Resolve all pending single wagers on a finished match."""
    match = require_match(conn, match_id)
    if match.status != "finished":
        raise ValueError(f"Match {match_id} is not finished")
    return _resolve_all(conn, get_pending_single_wagers(conn, match_id), "wagers")


def resolve_pending_combined(conn: sqlite3.Connection) -> ResolutionStats:
    """Re-scan every pending combined wager and resolve those now determinable."""
    return _resolve_all(conn, get_pending_combined_wagers(conn), "combined_wagers")


# Placement
def quote_odds(match: Match, kind: str) -> float:
    """Odds for a registry kind from the match's odds snapshot."""
    attr = QUOTED_ODDS.get(kind)
    if attr is None:
        raise ValueError(f"No quoted odds for {kind}; pass odds explicitly")
    return getattr(match.odds, attr)


def _require_open(conn: sqlite3.Connection, match_id: str) -> Match:
    match = require_match(conn, match_id)
    if match.status != "scheduled":
        raise ValueError(f"Match {match_id} is {match.status}, wagers are closed")
    return match


def place_wager(
    conn: sqlite3.Connection,
    user_id: str,
    match_id: str,
    stake: float,
    odds: Optional[float] = None,
    kind: Optional[str] = None,
    line: Optional[float] = None,
    selection: Optional[str] = None,
    category: Optional[str] = None,
    prediction: Optional[str] = None,
    legs: Optional[List[WagerLeg]] = None,
    placed_at: Optional[datetime] = None,
) -> Wager:
    """Place a wager, deducting the stake from the user's balance.

    Either ``kind`` (registry), ``category`` + ``prediction`` (legacy) or
    ``legs`` (combined) must be given. Missing odds are quoted from the
    match's odds snapshot; for combined wagers the leg quotes are multiplied.
    """
    if stake is None or stake <= 0:
        raise ValueError("Stake must be positive")

    match = _require_open(conn, match_id)

    if legs:
        kind = COMBINED
        quotes = []
        for position, leg in enumerate(legs):
            leg.position = position
            leg_match = _require_open(conn, leg.match_id)
            if leg.kind:
                predicate_from_kind(leg.kind, leg.line, leg.selection)
                if odds is None:
                    quotes.append(quote_odds(leg_match, leg.kind))
            elif not leg.category:
                raise ValueError(f"Leg {position} needs a kind or a category")
            elif odds is None:
                raise ValueError("Legacy legs have no quoted odds; pass odds explicitly")
        if odds is None:
            odds = 1.0
            for quote in quotes:
                odds *= quote
    elif kind:
        predicate_from_kind(kind, line, selection)
        if odds is None:
            odds = quote_odds(match, kind)
    elif category:
        if odds is None:
            raise ValueError("Legacy wagers have no quoted odds; pass odds explicitly")
    else:
        raise ValueError("A wager needs a kind, a category or legs")

    if odds < 1.0:
        raise ValueError(f"Odds must be at least 1.0, got {odds}")

    stake = round(stake, 2)
    odds = round(odds, 2)
    placed_at = placed_at or datetime.now()
    wager = Wager(
        id=new_id(),
        user_id=user_id,
        match_id=match_id,
        stake=stake,
        odds=odds,
        potential_payout=round(stake * odds, 2),
        kind=kind,
        line=line,
        selection=selection,
        category=category,
        prediction=prediction,
        placed_at=placed_at,
        legs=list(legs or []),
    )

    with transaction(conn, immediate=True):
        user = require_user(conn, user_id)
        if wager.stake > user.balance:
            raise ValueError(f"Insufficient balance: {user.balance:.2f} < {wager.stake:.2f}")
        balance_after = round(user.balance - wager.stake, 2)
        update_user_balance(conn, user.id, balance_after)
        insert_wager(conn, wager)
        insert_ledger_entry(conn, LedgerEntry(
            id=new_id(),
            user_id=user.id,
            kind="bet_placed",
            amount=-wager.stake,
            balance_before=user.balance,
            balance_after=balance_after,
            description=f"Wager on match {match_id}",
            reference_id=wager.id,
            created_at=placed_at,
        ))

    logger.info(f"Placed wager {wager.id}: {wager.stake:.2f} @ {wager.odds:.2f} by {user_id}")
    return wager


def cancel_wager(conn: sqlite3.Connection, wager_id: str) -> Wager:
    """Cancel a pending wager and refund its stake."""
    wager = require_wager(conn, wager_id)
    if wager.status != "pending":
        raise ValueError(f"Wager {wager_id} is already {wager.status}")

    now = datetime.now()
    with transaction(conn, immediate=True):
        if not mark_wager_resolved(conn, wager.id, "cancelled", "cancelled by request", now):
            raise ValueError(f"Wager {wager_id} is no longer pending")
        user = require_user(conn, wager.user_id)
        balance_after = round(user.balance + wager.stake, 2)
        update_user_balance(conn, user.id, balance_after)
        insert_ledger_entry(conn, LedgerEntry(
            id=new_id(),
            user_id=user.id,
            kind="refund",
            amount=wager.stake,
            balance_before=user.balance,
            balance_after=balance_after,
            description=f"Refund for cancelled wager {wager.id}",
            reference_id=wager.id,
            created_at=now,
        ))

    wager.status = "cancelled"
    wager.resolved_at = now
    logger.info(f"Cancelled wager {wager.id}, refunded {wager.stake:.2f}")
    return wager

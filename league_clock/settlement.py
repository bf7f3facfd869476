"""Match finalization and the settlement stages that follow it.

A match is finalized at most once: the result write is a conditional update
made under an immediate write lock, so a retried or concurrent call finds
nothing to update and quietly does nothing. Everything downstream of that
write (wagers, forecasts, standings, season completion) runs as separate
stages. A failing stage is logged and reported but never undoes the result
or stops the stages after it.
"""
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from .database import (
    reopen_match_row,
    replace_match_events,
    require_match,
    settle_match_row,
    transaction,
)
from .forecasts import ForecastStats, resolve_forecasts_for_match
from .models import HistoricalSeasonRecord, Match, MatchResult, StageFailure
from .seasons import finish_season_if_complete
from .standings import apply_team_records, recalculate_standings
from .wagers import ResolutionStats, resolve_pending_combined, resolve_wagers_for_match

logger = logging.getLogger(__name__)


@dataclass
class FinalizeReport:
    match_id: str
    finalized: bool = False
    wagers: ResolutionStats = field(default_factory=ResolutionStats)
    forecasts: Optional[ForecastStats] = None
    standings_updated: bool = False
    archived: Optional[HistoricalSeasonRecord] = None
    errors: List[StageFailure] = field(default_factory=list)


def _run_stage(report: FinalizeReport, stage: str, ref_id: str, func: Callable):
    try:
        return func()
    except Exception as e:
        logger.error(f"Stage {stage} failed for {ref_id}: {e}")
        report.errors.append(StageFailure(stage, ref_id, str(e)))
        return None


def _catch_team_id(match: Match, result: MatchResult) -> Optional[str]:
    if not result.special_catch:
        return None
    if result.catch_side == "home":
        return match.home_team_id
    if result.catch_side == "away":
        return match.away_team_id
    raise ValueError(f"Special catch needs a side of 'home' or 'away', got {result.catch_side!r}")


def finalize_match(
    conn: sqlite3.Connection,
    match_id: str,
    result: MatchResult,
    settled_at: Optional[datetime] = None
) -> FinalizeReport:
    """Finish a match with ``result`` and settle everything that depends on it.

    Raises NotFoundError if the match does not exist. A match that is already
    finished is left untouched and the report has ``finalized=False``.
    """
    match = require_match(conn, match_id)
    report = FinalizeReport(match_id=match_id)

    if match.status == "finished" or match.consolidated:
        logger.debug(f"Match {match_id} already settled")
        return report

    catch_team_id = _catch_team_id(match, result)
    settled_at = settled_at or datetime.now()

    with transaction(conn, immediate=True):
        if not settle_match_row(conn, match_id, result, catch_team_id, settled_at):
            logger.debug(f"Match {match_id} settled concurrently")
            return report
        replace_match_events(conn, match_id, result.events, match.home_team_id, match.away_team_id)
        match = require_match(conn, match_id)
        apply_team_records(conn, match)

    report.finalized = True
    logger.info(
        f"Finalized {match_id}: {match.home_score}-{match.away_score} "
        f"in {match.duration} min" + (f", catch by {match.catch_side()}" if match.special_catch else "")
    )

    def settle_wagers():
        report.wagers.merge(resolve_wagers_for_match(conn, match_id))

    def settle_combined():
        report.wagers.merge(resolve_pending_combined(conn))

    def settle_forecasts():
        report.forecasts = resolve_forecasts_for_match(conn, match_id)

    def update_standings():
        with transaction(conn, immediate=True):
            recalculate_standings(conn, match.season_id)
        report.standings_updated = True

    def complete_season():
        report.archived = finish_season_if_complete(conn, match.season_id)

    _run_stage(report, "wagers", match_id, settle_wagers)
    _run_stage(report, "combined_wagers", match_id, settle_combined)
    _run_stage(report, "forecasts", match_id, settle_forecasts)
    _run_stage(report, "standings", match.season_id, update_standings)
    _run_stage(report, "season", match.season_id, complete_season)

    # Per-item failures caught inside the stages
    report.errors.extend(report.wagers.failures)
    if report.forecasts:
        report.errors.extend(report.forecasts.failures)
    return report


def reset_match(conn: sqlite3.Connection, match_id: str) -> Match:
    """Administrative reset of a finished match back to scheduled.

    Removes the match's contribution to both team records, clears its events
    and recomputes the season table. Wagers and forecasts that were already
    resolved stay resolved.
    """
    match = require_match(conn, match_id)
    if match.status != "finished":
        raise ValueError(f"Match {match_id} is {match.status}, only finished matches can be reset")

    with transaction(conn, immediate=True):
        if not reopen_match_row(conn, match_id):
            raise ValueError(f"Match {match_id} was reset concurrently")
        apply_team_records(conn, match, sign=-1)
        replace_match_events(conn, match_id, [], match.home_team_id, match.away_team_id)
        recalculate_standings(conn, match.season_id)

    logger.warning(f"Reset match {match_id} to scheduled")
    return require_match(conn, match_id)

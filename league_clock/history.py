"""Cross-season archive: season records, team and user aggregates."""
import logging
import sqlite3
from datetime import datetime
from typing import List, Optional

from .database import (
    get_historical_season,
    get_historical_team_stats,
    get_season_forecast_count,
    get_season_match_counts,
    get_season_team_ids,
    get_season_wager_totals,
    get_user_forecast_totals,
    get_user_wager_totals,
    insert_historical_season,
    new_id,
    replace_historical_user_stats,
    require_season,
    require_team,
    save_historical_team_stats,
    transaction,
)
from .models import HistoricalSeasonRecord, HistoricalTeamStats, HistoricalUserStats, StandingsRow
from .standings import recalculate_standings

logger = logging.getLogger(__name__)


def fold_team_season(stats: HistoricalTeamStats, row: StandingsRow) -> HistoricalTeamStats:
    """Add one season's standings row to a team's cross-season totals."""
    stats.total_seasons += 1
    stats.total_matches += row.matches_played
    stats.total_wins += row.wins
    stats.total_losses += row.losses
    stats.total_draws += row.draws
    stats.total_points_for += row.points_for
    stats.total_points_against += row.points_against
    stats.total_special_catches += row.special_catches
    if row.position == 1:
        stats.championships_won += 1
    if stats.best_position is None or row.position < stats.best_position:
        stats.best_position = row.position
    if stats.worst_position is None or row.position > stats.worst_position:
        stats.worst_position = row.position
    return stats


def archive_season(conn: sqlite3.Connection, season_id: str) -> Optional[HistoricalSeasonRecord]:
    """Archive a finished season exactly once.

    Returns the new record, or None when the season was already archived.
    """
    season = require_season(conn, season_id)
    if season.status != "finished":
        raise ValueError(f"Season {season_id} is {season.status}, only finished seasons are archived")

    if get_historical_season(conn, season_id):
        logger.info(f"Season {season.name} already archived, skipping")
        return None

    with transaction(conn, immediate=True):
        # Re-check under the write lock
        if get_historical_season(conn, season_id):
            logger.info(f"Season {season.name} already archived, skipping")
            return None

        table = recalculate_standings(conn, season_id)
        matches = get_season_match_counts(conn, season_id)
        wagers = get_season_wager_totals(conn, season_id)

        champion = next((row for row in table if row.position == 1), None)
        champion_name = require_team(conn, champion.team_id).name if champion else None

        record = HistoricalSeasonRecord(
            id=new_id(),
            season_id=season.id,
            name=season.name,
            start_date=season.start_date,
            end_date=season.end_date,
            total_teams=len(get_season_team_ids(conn, season_id)),
            total_matches=matches["total"],
            finished_matches=matches["finished"],
            total_bets=wagers["total"],
            total_predictions=get_season_forecast_count(conn, season_id),
            total_revenue=round(wagers["revenue"], 2),
            champion_team_id=champion.team_id if champion else None,
            champion_team_name=champion_name,
            archived_at=datetime.now(),
        )
        insert_historical_season(conn, record)

        for row in table:
            stats = get_historical_team_stats(conn, row.team_id)
            if stats is None:
                stats = HistoricalTeamStats(team_id=row.team_id, team_name=require_team(conn, row.team_id).name)
            save_historical_team_stats(conn, fold_team_season(stats, row))

        recompute_user_stats(conn)

    logger.info(f"Archived season {season.name}, champion: {champion_name or 'none'}")
    return record


def recompute_user_stats(conn: sqlite3.Connection) -> List[HistoricalUserStats]:
    """Rebuild every user's all-time wager and forecast aggregates.

    Wagers and forecasts are aggregated separately so neither count is
    multiplied by the other.
    """
    forecasts = get_user_forecast_totals(conn)
    result = []
    for row in get_user_wager_totals(conn):
        f = forecasts.get(row["user_id"], {})
        resolved = f.get("resolved_predictions", 0)
        correct = f.get("correct_predictions", 0)
        result.append(HistoricalUserStats(
            user_id=row["user_id"],
            username=row["username"],
            total_bets=row["total_bets"],
            total_staked=round(row["total_staked"], 2),
            total_winnings=round(row["total_winnings"], 2),
            total_losses=round(row["total_losses"], 2),
            total_predictions=f.get("total_predictions", 0),
            correct_predictions=correct,
            prediction_accuracy=round(correct / resolved * 100, 2) if resolved else 0.0,
            prediction_points=f.get("prediction_points", 0),
        ))

    replace_historical_user_stats(conn, result)
    return result

"""Team records and league table recalculation."""
import logging
import sqlite3
from typing import Dict, Iterable, List

from .database import (
    adjust_team_record,
    get_season_matches,
    get_season_team_ids,
    replace_standings,
    require_season,
)
from .models import Match, StandingsRow

logger = logging.getLogger(__name__)

WIN_POINTS = 3
DRAW_POINTS = 1


def apply_team_records(conn: sqlite3.Connection, match: Match, sign: int = 1) -> None:
    """Fold one finished match into both teams' career records.

    ``sign=-1`` removes a previously applied result (administrative reset).
    """
    home, away = match.home_score, match.away_score
    catch_side = match.catch_side()

    for side, team_id, scored, conceded in (
        ("home", match.home_team_id, home, away),
        ("away", match.away_team_id, away, home),
    ):
        adjust_team_record(
            conn,
            team_id,
            played=sign,
            wins=sign if scored > conceded else 0,
            losses=sign if scored < conceded else 0,
            draws=sign if scored == conceded else 0,
            points_for=sign * scored,
            points_against=sign * conceded,
            special_catches=sign if catch_side == side else 0,
        )


def compute_table(season_id: str, team_ids: Iterable[str], matches: Iterable[Match]) -> List[StandingsRow]:
    """Build a sorted league table from finished matches."""
    rows: Dict[str, StandingsRow] = {
        team_id: StandingsRow(season_id=season_id, team_id=team_id) for team_id in team_ids
    }

    for match in matches:
        if match.status != "finished":
            continue
        catch_side = match.catch_side()
        for side, team_id, scored, conceded in (
            ("home", match.home_team_id, match.home_score, match.away_score),
            ("away", match.away_team_id, match.away_score, match.home_score),
        ):
            row = rows.get(team_id)
            if row is None:
                # Team played in the season without being enrolled
                row = rows[team_id] = StandingsRow(season_id=season_id, team_id=team_id)
            row.matches_played += 1
            row.points_for += scored
            row.points_against += conceded
            if scored > conceded:
                row.wins += 1
            elif scored < conceded:
                row.losses += 1
            else:
                row.draws += 1
            if catch_side == side:
                row.special_catches += 1

    table = list(rows.values())
    for row in table:
        row.points = WIN_POINTS * row.wins + DRAW_POINTS * row.draws

    table.sort(key=lambda r: r.team_id)
    table.sort(key=lambda r: (r.points, r.goal_difference, r.points_for), reverse=True)
    for position, row in enumerate(table, start=1):
        row.position = position
    return table


def recalculate_standings(conn: sqlite3.Connection, season_id: str) -> List[StandingsRow]:
    """Recompute and fully replace the standings of a season.

    Safe to call any number of times; the result only depends on the
    season's finished matches.
    """
    require_season(conn, season_id)
    team_ids = get_season_team_ids(conn, season_id)
    matches = get_season_matches(conn, season_id, status="finished")

    table = compute_table(season_id, team_ids, matches)
    replace_standings(conn, season_id, table)

    logger.debug(f"Standings for season {season_id}: {len(table)} teams, {len(matches)} finished matches")
    return table

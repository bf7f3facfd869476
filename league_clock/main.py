"""CLI entry point for the league clock."""
import logging
import random
import sqlite3
import sys
from datetime import timedelta

import click
from rich.console import Console
from rich.table import Table
from rich.logging import RichHandler

from .clock import AdvanceOptions, VirtualClock
from .config import CLOCK_SPEEDS, DB_PATH, DEFAULT_SKILL, STARTING_BALANCE
from .database import (
    NotFoundError,
    get_all_historical_seasons,
    get_all_historical_team_stats,
    get_all_teams,
    get_all_users,
    get_connection,
    get_matches_by_status,
    get_standings,
    get_wagers_by_user,
    init_database,
    insert_team,
    insert_user,
    new_id,
    require_match,
    require_team,
    transaction,
)
from .forecasts import submit_forecast
from .models import MatchResult, Team
from .seasons import activate_season, create_season, get_active_season
from .simulator import simulate_match
from .wagers import place_wager

console = Console()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(console=console, rich_tracebacks=True)]
)
logger = logging.getLogger(__name__)


def _open(ctx) -> sqlite3.Connection:
    conn = get_connection(ctx.obj["db_path"])
    init_database(conn)
    return conn


def _fail(message: str) -> None:
    console.print(f"[red]Error: {message}[/red]")
    sys.exit(1)


def _team_names(conn) -> dict:
    return {team.id: team.name for team in get_all_teams(conn)}


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--db", "db_path", default=str(DB_PATH), show_default=True, help="SQLite database path")
@click.pass_context
def cli(ctx, debug, db_path):
    """Virtual league clock and settlement engine CLI."""
    if debug:
        logging.getLogger().setLevel(logging.DEBUG)
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = db_path


@cli.command()
@click.pass_context
def init(ctx):
    """Initialize the database."""
    console.print("[bold]Initializing database...[/bold]")
    conn = _open(ctx)
    conn.close()
    console.print(f"[green]Database initialized at {ctx.obj['db_path']}[/green]")


@cli.command("add-team")
@click.argument("name")
@click.option("--attack", default=DEFAULT_SKILL, type=click.IntRange(0, 100))
@click.option("--defense", default=DEFAULT_SKILL, type=click.IntRange(0, 100))
@click.option("--keeper", default=DEFAULT_SKILL, type=click.IntRange(0, 100))
@click.option("--seeker", default=DEFAULT_SKILL, type=click.IntRange(0, 100))
@click.option("--chaser", default=DEFAULT_SKILL, type=click.IntRange(0, 100))
@click.option("--beater", default=DEFAULT_SKILL, type=click.IntRange(0, 100))
@click.pass_context
def add_team(ctx, name, attack, defense, keeper, seeker, chaser, beater):
    """Add a team with its strength profile."""
    conn = _open(ctx)
    team = Team(
        id=new_id(), name=name, attack=attack, defense=defense,
        keeper=keeper, seeker=seeker, chaser=chaser, beater=beater,
    )
    with transaction(conn):
        insert_team(conn, team)
    conn.close()
    console.print(f"[green]Added team {name}[/green] ({team.id})")


@cli.command("add-user")
@click.argument("username")
@click.option("--balance", default=STARTING_BALANCE, type=float, show_default=True)
@click.pass_context
def add_user(ctx, username, balance):
    """Create a user account."""
    conn = _open(ctx)
    with transaction(conn):
        user_id = insert_user(conn, username, balance)
    conn.close()
    console.print(f"[green]Added user {username}[/green] ({user_id})")


@cli.command()
@click.pass_context
def users(ctx):
    """Show user balances and wager counts."""
    conn = _open(ctx)
    accounts = [(user, get_wagers_by_user(conn, user.id)) for user in get_all_users(conn)]
    conn.close()

    if not accounts:
        console.print("[yellow]No users yet.[/yellow]")
        return

    table = Table(title="Users")
    table.add_column("Username", style="cyan")
    table.add_column("Balance", justify="right", style="green")
    table.add_column("Pending", justify="right")
    table.add_column("Won", justify="right")
    table.add_column("Lost", justify="right")

    for user, wagers in accounts:
        statuses = [wager.status for wager in wagers]
        table.add_row(
            user.username,
            f"{user.balance:.2f}",
            str(statuses.count("pending")),
            str(statuses.count("won")),
            str(statuses.count("lost")),
        )

    console.print(table)


@cli.command()
@click.pass_context
def clock(ctx):
    """Show the virtual clock state."""
    conn = _open(ctx)
    state = VirtualClock.load(conn).get_state()
    season = get_active_season(conn)
    conn.close()

    console.print("[bold]Virtual Clock[/bold]")
    console.print(f"  Time: {state.current_time:%Y-%m-%d %H:%M}")
    console.print(f"  Speed: {state.speed}")
    console.print(f"  Auto mode: {'on' if state.auto_mode else 'off'}")
    console.print(f"  Active season: {season.name if season else '-'}")


@cli.command()
@click.option("--speed", type=click.Choice(CLOCK_SPEEDS))
@click.option("--auto/--no-auto", "auto_mode", default=None, help="Toggle automatic season generation")
@click.pass_context
def settings(ctx, speed, auto_mode):
    """Update clock speed and auto mode."""
    conn = _open(ctx)
    state = VirtualClock.load(conn).update_settings(speed=speed, auto_mode=auto_mode)
    conn.close()
    console.print(f"[green]Speed {state.speed}, auto mode {'on' if state.auto_mode else 'off'}[/green]")


@cli.command()
@click.option("--days", "-d", type=float, help="Days to advance")
@click.option("--hours", "-h", type=float, help="Hours to advance")
@click.option("--next", "until_next", is_flag=True, help="Advance to the next scheduled match")
@click.option("--no-simulate", is_flag=True, help="Move time without playing due matches")
@click.option("--seed", type=int, help="Random seed for reproducible simulations")
@click.pass_context
def advance(ctx, days, hours, until_next, no_simulate, seed):
    """Advance the clock and settle due matches."""
    conn = _open(ctx)
    vclock = VirtualClock.load(conn, rng=random.Random(seed) if seed is not None else None)
    options = AdvanceOptions(days=days, hours=hours, until_next_match=until_next, simulate_pending=not no_simulate)
    try:
        result = vclock.advance(options)
    except ValueError as e:
        conn.close()
        _fail(str(e))
    conn.close()

    console.print("\n[bold green]Advance complete![/bold green]")
    console.print(f"  New time: {result.new_time:%Y-%m-%d %H:%M}")
    console.print(f"  Matches simulated: {result.simulated_count}")
    console.print(f"  Errors: {len(result.errors)}")
    for error in result.errors:
        console.print(f"    [red]{error}[/red]")
    if result.new_season:
        console.print(f"  New season: {result.new_season.name}")


@cli.command()
@click.argument("match_id")
@click.option("--home", "home_score", type=int, help="Home score")
@click.option("--away", "away_score", type=int, help="Away score")
@click.option("--duration", type=int, default=60, show_default=True, help="Duration in minutes")
@click.option("--catch", "catch_side", type=click.Choice(["home", "away", "none"]), default="none")
@click.pass_context
def finalize(ctx, match_id, home_score, away_score, duration, catch_side):
    """Finalize a match, simulating it unless scores are given."""
    conn = _open(ctx)
    try:
        match = require_match(conn, match_id)
        if home_score is None or away_score is None:
            result = simulate_match(require_team(conn, match.home_team_id), require_team(conn, match.away_team_id), match_id)
        else:
            result = MatchResult(
                home_score=home_score,
                away_score=away_score,
                duration=duration,
                special_catch=catch_side != "none",
                catch_side=None if catch_side == "none" else catch_side,
            )
        report = VirtualClock.load(conn).finalize_match(match_id, result)
    except (NotFoundError, ValueError) as e:
        conn.close()
        _fail(str(e))
    conn.close()

    if not report.finalized:
        console.print(f"[yellow]Match {match_id} was already settled[/yellow]")
        return
    console.print(f"[green]Finalized {match_id}: {result.home_score}-{result.away_score}[/green]")
    console.print(f"  Wagers won/lost: {report.wagers.won}/{report.wagers.lost}")
    console.print(f"  Errors: {len(report.errors)}")
    for error in report.errors:
        console.print(f"    [red]{error}[/red]")


@cli.command("new-season")
@click.option("--name", help="Season name")
@click.option("--start", type=click.DateTime(formats=["%Y-%m-%d"]), help="Start date (default: day after the clock)")
@click.option("--activate/--no-activate", default=True, show_default=True)
@click.pass_context
def new_season(ctx, name, start, activate):
    """Create a season with a double round-robin schedule."""
    conn = _open(ctx)
    start = start or VirtualClock.load(conn).now + timedelta(days=1)
    try:
        season = create_season(conn, name or f"Season {start.year}", start)
        if activate:
            activate_season(conn, season.id)
    except (NotFoundError, ValueError) as e:
        conn.close()
        _fail(str(e))
    conn.close()
    console.print(f"[green]Created {season.name}[/green] ({season.id}) starting {season.start_date:%Y-%m-%d}")


@cli.command()
@click.option("--limit", "-n", default=20, help="Number of matches to show")
@click.pass_context
def matches(ctx, limit):
    """Show upcoming scheduled matches."""
    conn = _open(ctx)
    upcoming = get_matches_by_status(conn, "scheduled")[:limit]
    names = _team_names(conn)
    conn.close()

    if not upcoming:
        console.print("[yellow]No scheduled matches. Create a season first.[/yellow]")
        return

    table = Table(title="Upcoming Matches")
    table.add_column("ID", style="dim")
    table.add_column("Kickoff")
    table.add_column("Home Team", style="cyan")
    table.add_column("Away Team", style="cyan")
    table.add_column("1", justify="right", style="green")
    table.add_column("X", justify="right", style="green")
    table.add_column("2", justify="right", style="green")

    for match in upcoming:
        table.add_row(
            match.id,
            f"{match.scheduled_at:%Y-%m-%d %H:%M}",
            names.get(match.home_team_id, match.home_team_id)[:20],
            names.get(match.away_team_id, match.away_team_id)[:20],
            f"{match.odds.home_win:.2f}",
            f"{match.odds.draw:.2f}",
            f"{match.odds.away_win:.2f}",
        )

    console.print(table)


@cli.command()
@click.option("--season", "season_id", help="Season ID (default: active season)")
@click.pass_context
def standings(ctx, season_id):
    """Show the league table."""
    conn = _open(ctx)
    if season_id is None:
        season = get_active_season(conn)
        if season is None:
            conn.close()
            _fail("No active season")
        season_id = season.id
    rows = get_standings(conn, season_id)
    names = _team_names(conn)
    conn.close()

    if not rows:
        console.print("[yellow]No standings for this season.[/yellow]")
        return

    table = Table(title="Standings")
    table.add_column("#", justify="right")
    table.add_column("Team", style="cyan")
    table.add_column("P", justify="right")
    table.add_column("W", justify="right")
    table.add_column("D", justify="right")
    table.add_column("L", justify="right")
    table.add_column("PF", justify="right")
    table.add_column("PA", justify="right")
    table.add_column("Diff", justify="right")
    table.add_column("Pts", justify="right", style="green")

    for row in rows:
        table.add_row(
            str(row.position),
            names.get(row.team_id, row.team_id)[:20],
            str(row.matches_played),
            str(row.wins),
            str(row.draws),
            str(row.losses),
            str(row.points_for),
            str(row.points_against),
            str(row.goal_difference),
            str(row.points),
        )

    console.print(table)


@cli.command()
@click.argument("user_id")
@click.argument("match_id")
@click.argument("stake", type=float)
@click.option("--kind", help="Wager kind, e.g. winner-home, total-over, exact-score")
@click.option("--line", type=float, help="Threshold for over/under kinds")
@click.option("--selection", help="Selection, e.g. 150-90 for exact-score")
@click.option("--category", help="Free-text category")
@click.option("--prediction", help="Free-text prediction")
@click.option("--odds", type=float, help="Odds (default: quoted from the match)")
@click.pass_context
def bet(ctx, user_id, match_id, stake, kind, line, selection, category, prediction, odds):
    """Place a wager."""
    conn = _open(ctx)
    try:
        wager = place_wager(
            conn, user_id, match_id, stake, odds=odds, kind=kind, line=line,
            selection=selection, category=category, prediction=prediction,
        )
    except (NotFoundError, ValueError) as e:
        conn.close()
        _fail(str(e))
    conn.close()
    console.print(
        f"[green]Wager {wager.id} placed:[/green] {wager.stake:.2f} @ {wager.odds:.2f} "
        f"(potential payout {wager.potential_payout:.2f})"
    )


@cli.command()
@click.argument("user_id")
@click.argument("match_id")
@click.argument("outcome", type=click.Choice(["home", "away", "draw"]))
@click.option("--confidence", "-c", default=3, type=click.IntRange(1, 5), show_default=True)
@click.pass_context
def forecast(ctx, user_id, match_id, outcome, confidence):
    """Submit a forecast for a match."""
    conn = _open(ctx)
    try:
        submitted = submit_forecast(conn, user_id, match_id, outcome, confidence)
    except (NotFoundError, ValueError) as e:
        conn.close()
        _fail(str(e))
    conn.close()
    console.print(f"[green]Forecast {submitted.id} saved[/green]")


@cli.command()
@click.pass_context
def history(ctx):
    """Show archived seasons and all-time team statistics."""
    conn = _open(ctx)
    seasons = get_all_historical_seasons(conn)
    teams = get_all_historical_team_stats(conn)
    conn.close()

    if not seasons:
        console.print("[yellow]No archived seasons yet.[/yellow]")
        return

    table = Table(title="Archived Seasons")
    table.add_column("Season", style="cyan")
    table.add_column("Teams", justify="right")
    table.add_column("Matches", justify="right")
    table.add_column("Bets", justify="right")
    table.add_column("Forecasts", justify="right")
    table.add_column("Revenue", justify="right", style="green")
    table.add_column("Champion")

    for record in seasons:
        table.add_row(
            record.name,
            str(record.total_teams),
            f"{record.finished_matches}/{record.total_matches}",
            str(record.total_bets),
            str(record.total_predictions),
            f"{record.total_revenue:.2f}",
            record.champion_team_name or "-",
        )
    console.print(table)

    table = Table(title="All-Time Teams")
    table.add_column("Team", style="cyan")
    table.add_column("Seasons", justify="right")
    table.add_column("W-D-L", justify="center")
    table.add_column("Titles", justify="right", style="green")
    table.add_column("Best", justify="right")
    table.add_column("Worst", justify="right")

    for stats in teams:
        table.add_row(
            stats.team_name[:20],
            str(stats.total_seasons),
            f"{stats.total_wins}-{stats.total_draws}-{stats.total_losses}",
            str(stats.championships_won),
            str(stats.best_position or "-"),
            str(stats.worst_position or "-"),
        )
    console.print(table)


def main():
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()

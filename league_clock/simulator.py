"""Outcome generator: turns two strength profiles into a match result.

Pure functions only. Nothing here touches the database; the caller decides
what to persist. Pass a seeded ``random.Random`` to get reproducible output.
"""
import random
from typing import List, Optional

from .config import (
    DURATION_RANGE,
    FOUL_COUNT_RANGE,
    GOAL_COUNT_RANGE,
    GOAL_POINTS,
    HOME_ADVANTAGE,
    SPECIAL_CATCH_CHANCE,
    SPECIAL_CATCH_POINTS,
)
from .models import MatchEvent, MatchResult, Team

CATCH_WINDOW_MINUTES = 10


def catch_probability(home: Team, away: Team) -> float:
    """Chance that the home side makes the special catch, given that one happens."""
    home_skill = home.seeker + HOME_ADVANTAGE
    total = home_skill + away.seeker
    if total <= 0:
        return 0.5
    return home_skill / total


def home_goal_share(home: Team, away: Team) -> float:
    """Expected fraction of goals scored by the home side, clamped to [0.2, 0.8]."""
    home_attack = (home.attack + home.chaser) / 2 + HOME_ADVANTAGE
    away_attack = (away.attack + away.chaser) / 2
    home_resist = (home.defense + home.keeper) / 2
    away_resist = (away.defense + away.keeper) / 2

    edge = (home_attack - away_resist) - (away_attack - home_resist)
    share = 0.5 + edge / 200
    return max(0.2, min(0.8, share))


def _foul_share(home: Team, away: Team) -> float:
    total = home.beater + away.beater
    if total <= 0:
        return 0.5
    return home.beater / total


def simulate_match(home: Team, away: Team, match_id: str, rng: Optional[random.Random] = None) -> MatchResult:
    """Simulate one match between ``home`` and ``away``.

    Scores are derived from the generated events, so they always equal the
    sum of event points per side.
    """
    rng = rng or random.Random()
    duration = rng.randint(*DURATION_RANGE)
    teams = {"home": home, "away": away}

    # (minute, side, kind, points)
    raw = []

    share = home_goal_share(home, away)
    for _ in range(rng.randint(*GOAL_COUNT_RANGE)):
        side = "home" if rng.random() < share else "away"
        raw.append((rng.randint(1, duration), side, "goal", GOAL_POINTS))

    fouls = _foul_share(home, away)
    for _ in range(rng.randint(*FOUL_COUNT_RANGE)):
        side = "home" if rng.random() < fouls else "away"
        raw.append((rng.randint(1, duration), side, "foul", 0))

    catch_side = None
    if rng.random() < SPECIAL_CATCH_CHANCE:
        catch_side = "home" if rng.random() < catch_probability(home, away) else "away"
        minute = rng.randint(max(1, duration - CATCH_WINDOW_MINUTES), duration)
        raw.append((minute, catch_side, "special_catch", SPECIAL_CATCH_POINTS))

    raw.sort(key=lambda item: item[0])

    events: List[MatchEvent] = []
    for index, (minute, side, kind, points) in enumerate(raw):
        events.append(MatchEvent(
            id=f"{match_id}-ev{index}",
            minute=minute,
            side=side,
            kind=kind,
            description=_describe(kind, teams[side]),
            points=points,
        ))

    home_score = sum(e.points for e in events if e.side == "home")
    away_score = sum(e.points for e in events if e.side == "away")

    return MatchResult(
        home_score=home_score,
        away_score=away_score,
        duration=duration,
        special_catch=catch_side is not None,
        catch_side=catch_side,
        events=events,
    )


def _describe(kind: str, team: Team) -> str:
    if kind == "goal":
        return f"Goal for {team.name} (+{GOAL_POINTS})"
    if kind == "foul":
        return f"Foul committed by {team.name}"
    return f"{team.name} make the special catch (+{SPECIAL_CATCH_POINTS})"

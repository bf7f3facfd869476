"""Outcome forecasts: submission and scoring."""
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .config import FORECAST_POINT_MULTIPLIER, MAX_CONFIDENCE, MIN_CONFIDENCE
from .database import (
    get_forecast_for_user_match,
    get_pending_forecasts,
    insert_forecast,
    mark_forecast_resolved,
    new_id,
    require_match,
    require_user,
    transaction,
)
from .models import Forecast, StageFailure

logger = logging.getLogger(__name__)

OUTCOMES = ("home", "away", "draw")


@dataclass
class ForecastStats:
    correct: int = 0
    incorrect: int = 0
    failures: List[StageFailure] = field(default_factory=list)


def forecast_points(confidence: int, correct: bool) -> int:
    return confidence * FORECAST_POINT_MULTIPLIER if correct else 0


def submit_forecast(
    conn: sqlite3.Connection,
    user_id: str,
    match_id: str,
    outcome: str,
    confidence: int = 3,
    created_at: Optional[datetime] = None
) -> Forecast:
    """Record a user's forecast for a match that has not started."""
    if outcome not in OUTCOMES:
        raise ValueError(f"Outcome must be one of {', '.join(OUTCOMES)}")
    if not MIN_CONFIDENCE <= confidence <= MAX_CONFIDENCE:
        raise ValueError(f"Confidence must be between {MIN_CONFIDENCE} and {MAX_CONFIDENCE}")

    require_user(conn, user_id)
    match = require_match(conn, match_id)
    if match.status != "scheduled":
        raise ValueError(f"Match {match_id} is {match.status}, forecasts are closed")
    if get_forecast_for_user_match(conn, user_id, match_id):
        raise ValueError(f"User {user_id} already has a forecast for match {match_id}")

    forecast = Forecast(
        id=new_id(),
        user_id=user_id,
        match_id=match_id,
        outcome=outcome,
        confidence=confidence,
        created_at=created_at or datetime.now(),
    )
    with transaction(conn):
        insert_forecast(conn, forecast)

    logger.info(f"Forecast {forecast.id}: {user_id} picks {outcome} ({confidence}) for {match_id}")
    return forecast


def resolve_forecasts_for_match(conn: sqlite3.Connection, match_id: str) -> ForecastStats:
    """Score every pending forecast on a finished match.

    Already-resolved forecasts are never touched, so calling this again is
    harmless.
    """
    match = require_match(conn, match_id)
    if match.status != "finished":
        raise ValueError(f"Match {match_id} is not finished")

    stats = ForecastStats()
    actual = match.outcome
    now = datetime.now()

    for forecast in get_pending_forecasts(conn, match_id):
        correct = forecast.outcome == actual
        try:
            with transaction(conn):
                updated = mark_forecast_resolved(
                    conn,
                    forecast.id,
                    "correct" if correct else "incorrect",
                    forecast_points(forecast.confidence, correct),
                    now,
                )
        except Exception as e:
            logger.error(f"Error resolving forecast {forecast.id}: {e}")
            stats.failures.append(StageFailure("forecasts", forecast.id, str(e)))
            continue

        if not updated:
            continue
        if correct:
            stats.correct += 1
        else:
            stats.incorrect += 1

    logger.debug(f"Forecasts for {match_id}: {stats.correct} correct, {stats.incorrect} incorrect")
    return stats

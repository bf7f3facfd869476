"""Virtual clock: moves simulated time forward and plays due matches."""
import logging
import random
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from .config import CLOCK_SPEEDS, DEFAULT_SPEED, DEFAULT_START_DATE
from .database import (
    delete_clock_state,
    get_due_matches,
    get_matches_by_status,
    get_next_scheduled_match,
    load_clock_state,
    require_team,
    save_clock_state,
    start_match_row,
    transaction,
)
from .models import ClockState, Match, MatchResult, Season, StageFailure
from .seasons import generate_season, get_active_season
from .settlement import FinalizeReport, finalize_match
from .simulator import simulate_match

logger = logging.getLogger(__name__)


@dataclass
class AdvanceOptions:
    days: Optional[float] = None
    hours: Optional[float] = None
    until_next_match: bool = False
    simulate_pending: bool = True


@dataclass
class AdvanceResult:
    new_time: datetime
    simulated_match_ids: List[str] = field(default_factory=list)
    errors: List[StageFailure] = field(default_factory=list)
    new_season: Optional[Season] = None

    @property
    def simulated_count(self) -> int:
        return len(self.simulated_match_ids)


def default_state() -> ClockState:
    return ClockState(current_time=DEFAULT_START_DATE, speed=DEFAULT_SPEED, auto_mode=False)


class VirtualClock:
    """Owns the simulated time and drives settlement of due matches.

    Time only moves forward. The new time is persisted after every due match
    has been processed, so an interrupted advance leaves finished matches
    finished and the rest scheduled, ready to be picked up again.
    """

    def __init__(self, conn: sqlite3.Connection, state: Optional[ClockState] = None, rng: Optional[random.Random] = None):
        self.conn = conn
        self.state = state or default_state()
        self.rng = rng or random.Random()

    @classmethod
    def load(cls, conn: sqlite3.Connection, rng: Optional[random.Random] = None) -> "VirtualClock":
        """Build a clock from the persisted state, or the default one."""
        return cls(conn, load_clock_state(conn), rng=rng)

    def get_state(self) -> ClockState:
        return self.state

    @property
    def now(self) -> datetime:
        return self.state.current_time

    def _save(self) -> None:
        with transaction(self.conn):
            save_clock_state(self.conn, self.state)

    def _candidate_time(self, options: AdvanceOptions) -> datetime:
        if options.until_next_match:
            upcoming = get_next_scheduled_match(self.conn, after=self.now)
            if upcoming is None:
                return self.now + timedelta(days=1)
            return max(self.now, upcoming.scheduled_at)

        if options.days is None and options.hours is None:
            return self.now + timedelta(days=1)

        delta = timedelta(days=options.days or 0, hours=options.hours or 0)
        if delta < timedelta(0):
            raise ValueError("The clock cannot move backwards")
        return self.now + delta

    def _play(self, match: Match, result: AdvanceResult) -> None:
        """Simulate and finalize one match, collecting rather than raising errors."""
        try:
            home = require_team(self.conn, match.home_team_id)
            away = require_team(self.conn, match.away_team_id)
            if match.status == "scheduled":
                with transaction(self.conn, immediate=True):
                    started = start_match_row(self.conn, match.id)
                if not started:
                    logger.debug(f"Match {match.id} already picked up elsewhere, skipping")
                    return
            outcome = simulate_match(home, away, match.id, rng=self.rng)
            report = finalize_match(
                self.conn, match.id, outcome,
                settled_at=match.scheduled_at + timedelta(minutes=outcome.duration),
            )
        except Exception as e:
            logger.error(f"Error simulating match {match.id}: {e}")
            result.errors.append(StageFailure("simulation", match.id, str(e)))
            return

        if report.finalized:
            result.simulated_match_ids.append(match.id)
        result.errors.extend(report.errors)

    def advance(self, options: Optional[AdvanceOptions] = None) -> AdvanceResult:
        """Move time forward and settle every match that became due.

        Matches left live by an interrupted run are finished first, then
        scheduled matches in ``(now, new time]`` in kickoff order.
        """
        options = options or AdvanceOptions()
        candidate = self._candidate_time(options)
        result = AdvanceResult(new_time=candidate)

        if options.simulate_pending:
            for match in get_matches_by_status(self.conn, "live"):
                logger.info(f"Resuming live match {match.id}")
                self._play(match, result)
            for match in get_due_matches(self.conn, self.now, candidate):
                self._play(match, result)

        active = get_active_season(self.conn)
        self.state.active_season_id = active.id if active else None
        self.state.current_time = candidate
        self.state.last_update = datetime.now()
        self._save()

        if self.state.auto_mode:
            result.new_season = self.generate_season_if_needed()

        logger.info(
            f"Clock advanced to {candidate:%Y-%m-%d %H:%M}: "
            f"{result.simulated_count} matches simulated, {len(result.errors)} errors"
        )
        return result

    def finalize_match(self, match_id: str, result: MatchResult) -> FinalizeReport:
        """Finalize a match with an externally supplied result."""
        return finalize_match(self.conn, match_id, result, settled_at=self.now)

    def update_settings(self, speed: Optional[str] = None, auto_mode: Optional[bool] = None) -> ClockState:
        if speed is not None:
            if speed not in CLOCK_SPEEDS:
                raise ValueError(f"Speed must be one of {', '.join(CLOCK_SPEEDS)}")
            self.state.speed = speed
        if auto_mode is not None:
            self.state.auto_mode = auto_mode
        self.state.last_update = datetime.now()
        self._save()
        return self.state

    def set_time(self, when: datetime) -> ClockState:
        """Jump to ``when`` without playing matches. Only forward jumps are allowed."""
        if when < self.now:
            raise ValueError(f"Cannot move the clock back from {self.now} to {when}")
        self.state.current_time = when
        self.state.last_update = datetime.now()
        self._save()
        return self.state

    def reset(self) -> ClockState:
        """Administrative reset to the default start time and settings."""
        with transaction(self.conn):
            delete_clock_state(self.conn)
        self.state = default_state()
        self._save()
        logger.warning(f"Clock reset to {self.now}")
        return self.state

    def generate_season_if_needed(self) -> Optional[Season]:
        """Create and activate a new season when auto mode is on and none is active."""
        if not self.state.auto_mode:
            return None

        active = get_active_season(self.conn)
        if active:
            self.state.active_season_id = active.id
            return None

        season = generate_season(self.conn, self.now, rng=self.rng)
        if season is None:
            return None

        self.state.active_season_id = season.id
        self._save()
        return season

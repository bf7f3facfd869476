"""Data models for the league clock and settlement engine."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass
class ClockState:
    """Current virtual time and the settings that drive it."""
    current_time: datetime
    speed: str = "medium"  # slow, medium, fast
    auto_mode: bool = False
    last_update: Optional[datetime] = None
    active_season_id: Optional[str] = None


@dataclass
class Team:
    """A competitor: strength profile plus cumulative career record."""
    id: str
    name: str
    attack: int = 75
    defense: int = 75
    keeper: int = 75
    seeker: int = 75
    chaser: int = 75
    beater: int = 75
    matches_played: int = 0
    wins: int = 0
    losses: int = 0
    draws: int = 0
    points_for: int = 0
    points_against: int = 0
    special_catches: int = 0


@dataclass
class User:
    id: str
    username: str
    balance: float
    created_at: Optional[datetime] = None


@dataclass
class Season:
    id: str
    name: str
    start_date: datetime
    end_date: datetime
    status: str = "upcoming"  # upcoming, active, finished


@dataclass
class MatchOdds:
    """Odds snapshot fixed when the fixture is created."""
    home_win: float = 2.0
    away_win: float = 2.0
    draw: float = 5.0
    total_over: float = 1.8
    total_under: float = 1.8
    catch_home: float = 1.9
    catch_away: float = 1.9


@dataclass
class Match:
    id: str
    season_id: str
    home_team_id: str
    away_team_id: str
    scheduled_at: datetime
    status: str = "scheduled"  # scheduled, live, finished, postponed
    home_score: int = 0
    away_score: int = 0
    special_catch: bool = False
    catch_team_id: Optional[str] = None
    duration: Optional[int] = None
    consolidated: bool = False
    odds: MatchOdds = field(default_factory=MatchOdds)

    @property
    def outcome(self) -> str:
        if self.home_score > self.away_score:
            return "home"
        if self.away_score > self.home_score:
            return "away"
        return "draw"

    def catch_side(self) -> Optional[str]:
        """Return 'home', 'away' or None depending on who made the special catch."""
        if not self.special_catch or self.catch_team_id is None:
            return None
        if self.catch_team_id == self.home_team_id:
            return "home"
        if self.catch_team_id == self.away_team_id:
            return "away"
        return None


@dataclass
class MatchEvent:
    """One entry of a match timeline."""
    id: str
    minute: int
    side: str  # home or away
    kind: str  # goal, foul, special_catch
    description: str
    points: int = 0
    player: Optional[str] = None


@dataclass
class MatchResult:
    """Final outcome of a match, simulated or supplied by an administrator."""
    home_score: int
    away_score: int
    duration: int
    special_catch: bool = False
    catch_side: Optional[str] = None  # home, away or None
    events: List[MatchEvent] = field(default_factory=list)

    @property
    def outcome(self) -> str:
        if self.home_score > self.away_score:
            return "home"
        if self.away_score > self.home_score:
            return "away"
        return "draw"


@dataclass
class WagerLeg:
    """One predicate of a combined wager."""
    match_id: str
    kind: Optional[str] = None
    line: Optional[float] = None
    selection: Optional[str] = None
    category: Optional[str] = None  # legacy free-text category
    prediction: Optional[str] = None  # legacy free-text prediction
    position: int = 0


@dataclass
class Wager:
    id: str
    user_id: str
    match_id: str
    stake: float
    odds: float
    potential_payout: float
    kind: Optional[str] = None  # registry kind, or "combined"
    line: Optional[float] = None
    selection: Optional[str] = None
    category: Optional[str] = None
    prediction: Optional[str] = None
    status: str = "pending"  # pending, won, lost, cancelled
    placed_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    reason: Optional[str] = None
    legs: List[WagerLeg] = field(default_factory=list)

    @property
    def is_combined(self) -> bool:
        return self.kind == "combined" or self.category == "combined"


@dataclass
class Forecast:
    id: str
    user_id: str
    match_id: str
    outcome: str  # home, away, draw
    confidence: int = 3
    status: str = "pending"  # pending, correct, incorrect
    points: int = 0
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None


@dataclass
class StandingsRow:
    season_id: str
    team_id: str
    position: int = 0
    points: int = 0
    matches_played: int = 0
    wins: int = 0
    losses: int = 0
    draws: int = 0
    points_for: int = 0
    points_against: int = 0
    special_catches: int = 0

    @property
    def goal_difference(self) -> int:
        return self.points_for - self.points_against


@dataclass
class LedgerEntry:
    """Monetary movement against a user balance."""
    id: str
    user_id: str
    kind: str  # bet_placed, bet_won, bet_lost, refund
    amount: float
    balance_before: float
    balance_after: float
    description: Optional[str] = None
    reference_id: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class HistoricalSeasonRecord:
    id: str
    season_id: str
    name: str
    start_date: datetime
    end_date: datetime
    total_teams: int = 0
    total_matches: int = 0
    finished_matches: int = 0
    total_bets: int = 0
    total_predictions: int = 0
    total_revenue: float = 0.0
    champion_team_id: Optional[str] = None
    champion_team_name: Optional[str] = None
    archived_at: Optional[datetime] = None


@dataclass
class HistoricalTeamStats:
    team_id: str
    team_name: str
    total_seasons: int = 0
    total_matches: int = 0
    total_wins: int = 0
    total_losses: int = 0
    total_draws: int = 0
    total_points_for: int = 0
    total_points_against: int = 0
    total_special_catches: int = 0
    championships_won: int = 0
    best_position: Optional[int] = None
    worst_position: Optional[int] = None


@dataclass
class HistoricalUserStats:
    user_id: str
    username: str
    total_bets: int = 0
    total_staked: float = 0.0
    total_winnings: float = 0.0
    total_losses: float = 0.0
    total_predictions: int = 0
    correct_predictions: int = 0
    prediction_accuracy: float = 0.0
    prediction_points: int = 0


@dataclass
class StageFailure:
    """A caught error from one settlement stage, reported instead of raised."""
    stage: str
    ref_id: str
    message: str

    def __str__(self) -> str:
        return f"{self.stage}[{self.ref_id}]: {self.message}"

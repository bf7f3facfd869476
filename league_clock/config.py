"""Configuration and settings for the league clock."""
import os
from datetime import datetime
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Base paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = BASE_DIR / "data"
DB_PATH = Path(os.getenv("LEAGUE_DB_PATH", str(DATA_DIR / "league.db")))

# Virtual clock starts before the first season kicks off
DEFAULT_START_DATE = datetime.fromisoformat(os.getenv("LEAGUE_START_DATE", "2025-07-14T00:00:00"))
DEFAULT_SPEED = "medium"
CLOCK_SPEEDS = ("slow", "medium", "fast")

# Season lifecycle
SEASON_DURATION_DAYS = int(os.getenv("SEASON_DURATION_DAYS", "120"))
MIN_TEAMS_FOR_SEASON = int(os.getenv("MIN_TEAMS_FOR_SEASON", "4"))
KICKOFF_HOURS = (14, 16, 18, 20)

# Users and forecasts
STARTING_BALANCE = float(os.getenv("STARTING_BALANCE", "1000"))
FORECAST_POINT_MULTIPLIER = int(os.getenv("FORECAST_POINT_MULTIPLIER", "10"))
MIN_CONFIDENCE = 1
MAX_CONFIDENCE = 5

# Match simulation
DEFAULT_SKILL = 75
HOME_ADVANTAGE = 5
GOAL_POINTS = 10
SPECIAL_CATCH_POINTS = 150
SPECIAL_CATCH_CHANCE = 0.85
DURATION_RANGE = (30, 89)  # minutes
GOAL_COUNT_RANGE = (8, 17)
FOUL_COUNT_RANGE = (2, 5)

# Odds bounds used when fixtures are generated: (low, high)
ODDS_BOUNDS = {
    "home_win": (1.5, 3.5),
    "away_win": (1.5, 3.5),
    "draw": (5.0, 10.0),
    "total_over": (1.8, 2.2),
    "total_under": (1.8, 2.2),
    "catch_home": (1.9, 2.1),
    "catch_away": (1.9, 2.1),
}

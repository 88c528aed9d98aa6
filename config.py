# Configuration file for the WorkLog service
from pathlib import Path

# Storage
DB_PATH = Path(__file__).parent / "worklog.db"
DB_TIMEOUT = 5.0  # Seconds a writer waits for the sqlite write lock

# Local calendar days are computed in this zone for every user
TIMEZONE = "Europe/Zurich"

# Owner used when a request carries no X-User-Id header
DEFAULT_OWNER = "local"

# Merging
DESCRIPTION_SEPARATOR = "\n---\n"

# Day balancing
QUARTER_HOUR_SECONDS = 900
BALANCE_TOLERANCE_HOURS = 0.01

# Other
LOG_LEVEL = "INFO"

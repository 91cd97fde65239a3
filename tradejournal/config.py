"""
Central configuration.

Module-level settings read from the environment (a local .env file is loaded
first). Every value has a default suitable for local development.
"""

import os
from dotenv import load_dotenv

load_dotenv()

# --- Storage ---
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./trading_journal.db")

# --- Reporting ---
# Timezone used to bucket executions into trading days on dashboards
REPORT_TIMEZONE = os.getenv("REPORT_TIMEZONE", "US/Eastern")
HISTOGRAM_BINS = int(os.getenv("HISTOGRAM_BINS", "12"))

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# --- Trade reconstruction ---
# Raise instead of dropping a closed-trade cycle whose quantities don't net to zero
STRICT_TRADE_BALANCE = os.getenv("STRICT_TRADE_BALANCE", "true").strip().lower() in ("1", "true", "yes")

"""
Configuration module for the ExpenseGo ledger core.

Contains constants, settings, and configuration values used throughout the application.
"""

import logging
import os
import sys
from decimal import Decimal
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Version
VERSION = "0.1.0"
APP_NAME = "ExpenseGo"

# Application paths
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("EXPENSEGO_DATA_DIR", str(PROJECT_ROOT / "data")))
LOG_DIR = PROJECT_ROOT / "logs"

# Database configuration
DB_STORE_KEY = "database"
SCHEMA_VERSION = 1

# Balance rules
ALLOW_NEGATIVE_BALANCE = os.getenv(
    "EXPENSEGO_ALLOW_NEGATIVE_BALANCE", "true"
).lower() in ("1", "true", "yes")
MAX_TRANSACTIONS_PER_SCOPE: Optional[int] = None  # None means unlimited

# Backup configuration
BACKUP_VERSION = "1.0"
MAX_BACKUP_SIZE = 10 * 1024 * 1024  # 10 MiB
BACKUP_MAX_RETRIES = 3
BACKUP_RETRY_DELAY = 1.0  # seconds
PENDING_RESTORE_KEY = "pending_restore"
BACKUP_KEY = os.getenv("EXPENSEGO_BACKUP_KEY", "")
APP_SECRET = os.getenv("EXPENSEGO_APP_SECRET", "")

# Regional defaults
DEFAULT_CURRENCY = "INR"
TIMEZONE = os.getenv("EXPENSEGO_TIMEZONE", "UTC")

# Query limits
DEFAULT_TRANSACTION_LIMIT = 1000

# Input limits
MAX_NAME_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500

# Logging configuration
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILE = "expensego.log"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Seed data for every (bank, year) scope
DEFAULT_ACCOUNT = {
    "name": "Petty Cash",
    "type": "cash",
    "currency": DEFAULT_CURRENCY,
    "initial_balance": Decimal("0"),
    "color_code": "#FFD700",
    "icon": "💵",
    "notes": "Default cash account for small expenses",
}

DEFAULT_CATEGORIES = [
    # Expense categories
    {"name": "Food & Dining", "type": "expense", "icon": "🍽️", "color_code": "#FF6B6B"},
    {"name": "Groceries", "type": "expense", "icon": "🛒", "color_code": "#4ECDC4"},
    {"name": "Transportation", "type": "expense", "icon": "🚗", "color_code": "#45B7D1"},
    {"name": "Shopping", "type": "expense", "icon": "🛍️", "color_code": "#96CEB4"},
    {"name": "Entertainment", "type": "expense", "icon": "🎬", "color_code": "#D4A5A5"},
    {"name": "Bills & Utilities", "type": "expense", "icon": "📱", "color_code": "#9B59B6"},
    {"name": "General Expense", "type": "expense", "icon": "📝", "color_code": "#95A5A6"},
    # Income categories
    {"name": "Salary", "type": "income", "icon": "💰", "color_code": "#27AE60"},
    {"name": "Investments", "type": "income", "icon": "📈", "color_code": "#8E44AD"},
    {"name": "Other Income", "type": "income", "icon": "💵", "color_code": "#16A085"},
]

# Fallback categories used when a restored transaction's category is unknown
FALLBACK_CATEGORY_NAMES = {
    "expense": "General Expense",
    "income": "Other Income",
}


def load_environment(env_path: Optional[Path] = None) -> bool:
    """Load a .env file if present. Returns True if one was loaded."""
    env_path = env_path or PROJECT_ROOT / ".env"
    if env_path.exists():
        load_dotenv(env_path)
        return True
    return False


def ensure_directories():
    """Ensure required directories exist."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    LOG_DIR.mkdir(parents=True, exist_ok=True)


def get_log_level():
    """Get the configured log level."""
    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }
    return level_map.get(LOG_LEVEL.upper(), logging.INFO)


def configure_logging(log_to_file: bool = False):
    """Configure root logging for applications embedding the ledger core."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_to_file:
        ensure_directories()
        handlers.append(logging.FileHandler(LOG_DIR / LOG_FILE))

    logging.basicConfig(level=get_log_level(), format=LOG_FORMAT, handlers=handlers)

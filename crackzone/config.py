import os
import secrets
from pathlib import Path

# Base directory
BASE_DIR = Path(__file__).resolve().parent.parent

# Database
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE_DIR}/crackzone.db")

# Security
SECRET_KEY = os.getenv("SECRET_KEY", secrets.token_hex(32))
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "crackzone_session")
SESSION_EXPIRE_DAYS = int(os.getenv("SESSION_EXPIRE_DAYS", "7"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Teams
MIN_TEAM_SIZE = 2
MAX_TEAM_SIZE = 5
DEFAULT_MAX_MEMBERS = 5
DEFAULT_TEAM_AVATAR = "🎮"
AVAILABLE_TEAMS_LIMIT = 20
USER_SEARCH_LIMIT = 10

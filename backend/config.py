import os
import pathlib

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = pathlib.Path(__file__).resolve().parent

# Claude
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
CLAUDE_MODEL = os.getenv("CLAUDE_MODEL", "claude-sonnet-4-5")
COMPLETION_MAX_TOKENS = int(os.getenv("COMPLETION_MAX_TOKENS", "2048"))
COMPLETION_TEMPERATURE = float(os.getenv("COMPLETION_TEMPERATURE", "0.3"))
COMPLETION_TIMEOUT_SECONDS = float(os.getenv("COMPLETION_TIMEOUT_SECONDS", "30"))

# Storage
DATABASE_PATH = os.getenv("DATABASE_PATH", "flowify.db")

# Scheduling context
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "America/Los_Angeles")
CONTEXT_DAYS = int(os.getenv("CONTEXT_DAYS", "30"))

# Google Calendar
ENABLE_GCAL = os.getenv("ENABLE_GCAL", "0") == "1"
GOOGLE_TOKEN_DIR = pathlib.Path(
    os.getenv("GOOGLE_TOKEN_DIR", str(BASE_DIR / "gcal_tokens")))
GOOGLE_CALENDAR_ID = os.getenv("GOOGLE_CALENDAR_ID", "primary")
GCAL_SCOPES = [
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/calendar.events",
]

# HTTP
CORS_ALLOW_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOW_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]

# Application
ENVIRONMENT = os.getenv("ENVIRONMENT", "production")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def is_development() -> bool:
    return ENVIRONMENT.lower() == "development"

import json
import logging
import os

logger = logging.getLogger(__name__)

# Paths for credentials files
SECRETS_FOLDER = "secrets"
CREDENTIALS_PATH = os.path.join(SECRETS_FOLDER, "credentials.json")

# LLM settings
GOOGLE_GEMINI_API_KEY = None
LLM_MODEL = "gemini-2.0-flash"
LLM_TIMEOUT_SECONDS = 30
LLM_MAX_RETRIES = 0

# Hyperspell (calendar memories) settings
HYPERSPELL_API_KEY = None
HYPERSPELL_API_BASE_URL = "https://api.hyperspell.com"
CALENDAR_SOURCES = ["google_calendar", "vault"]
CALENDAR_TIMEOUT_SECONDS = 20
DEFAULT_CALENDAR_IDENTITY = "anonymous"

# AgentMail settings
AGENTMAIL_API_KEY = None
AGENTMAIL_API_BASE_URL = "https://api.agentmail.to/v0"
MAIL_TIMEOUT_SECONDS = 20
SKIP_SENDING_EMAILS = True  # Change to False to send emails

# Scheduling defaults, used when the inbox owner has no preferences stored
DEFAULT_TIMEZONE = "Europe/Helsinki"
DEFAULT_WORKING_HOURS_START = "09:00"
DEFAULT_WORKING_HOURS_END = "18:00"
DEFAULT_MEETING_DURATION = 60  # minutes

DATABASE_PATH = "assistant.db"
LOG_LEVEL = "INFO"

_STRING_KEYS = [
    "GOOGLE_GEMINI_API_KEY", "LLM_MODEL", "HYPERSPELL_API_KEY", "HYPERSPELL_API_BASE_URL",
    "DEFAULT_CALENDAR_IDENTITY", "AGENTMAIL_API_KEY", "AGENTMAIL_API_BASE_URL",
    "DEFAULT_TIMEZONE", "DEFAULT_WORKING_HOURS_START", "DEFAULT_WORKING_HOURS_END",
    "DATABASE_PATH", "LOG_LEVEL",
]
_INT_KEYS = [
    "LLM_TIMEOUT_SECONDS", "LLM_MAX_RETRIES", "CALENDAR_TIMEOUT_SECONDS",
    "MAIL_TIMEOUT_SECONDS", "DEFAULT_MEETING_DURATION",
]


def _apply(values: dict) -> None:
    for key in _STRING_KEYS:
        if values.get(key):
            globals()[key] = str(values[key])
    for key in _INT_KEYS:
        if values.get(key) not in (None, ""):
            try:
                globals()[key] = int(values[key])
            except (TypeError, ValueError):
                logger.warning("Ignoring non-integer value for %s: %r", key, values[key])
    if values.get("SKIP_SENDING_EMAILS") not in (None, ""):
        flag = values["SKIP_SENDING_EMAILS"]
        globals()["SKIP_SENDING_EMAILS"] = flag if isinstance(flag, bool) else str(flag).lower() in ("1", "true", "yes")


if os.path.exists(CREDENTIALS_PATH):
    try:
        with open(CREDENTIALS_PATH, 'r') as f:
            _apply(json.load(f))
    except json.JSONDecodeError:
        logger.error("Could not decode JSON from %s", CREDENTIALS_PATH)
    except OSError as e:
        logger.error("An error occurred while loading %s: %s", CREDENTIALS_PATH, e)

# Environment variables win over the credentials file
_apply({key: os.environ.get(key) for key in _STRING_KEYS + _INT_KEYS + ["SKIP_SENDING_EMAILS"]})

if not GOOGLE_GEMINI_API_KEY:
    logger.warning("GOOGLE_GEMINI_API_KEY is not configured. AI features will use their fallbacks.")

"""Application configuration — environment variables and derived constants.

Loads the bot token, transport selection, polling and webhook settings from
the environment via ``python-dotenv``.  All values are resolved at import
time so other modules can ``from config import …`` without repeated lookups.
"""

# ── stdlib ───────────────────────────────────────────────────────────────────
import os

# ── third-party ──────────────────────────────────────────────────────────────
from dotenv import load_dotenv

# ── core ─────────────────────────────────────────────────────────────────────
from core.logger import CourierLogger

# ── Environment bootstrap ────────────────────────────────────────────────────
load_dotenv()

# ── Logger (used for startup diagnostics at the bottom of this module) ───────
logger = CourierLogger.get_logger()


# ── Helper functions (private) ───────────────────────────────────────────────


def _env_int(name: str, default: int | None) -> int | None:
    """Read an integer variable, falling back to *default* on bad input."""
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid integer in environment, using default", extra={"variable": name, "value": raw, "default": default})
        return default


def _env_float(name: str, default: float) -> float:
    """Read a float variable, falling back to *default* on bad input."""
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid number in environment, using default", extra={"variable": name, "value": raw, "default": default})
        return default


def _env_bool(name: str, default: bool) -> bool:
    """Read a boolean variable (``1/true/yes/on`` and ``0/false/no/off``)."""
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    logger.warning("Invalid boolean in environment, using default", extra={"variable": name, "value": raw, "default": default})
    return default


def _parse_csv(raw: str | None) -> list[str]:
    """Split a comma-separated string into trimmed, non-empty tokens."""
    if not raw:
        return []
    return [token.strip() for token in raw.split(",") if token.strip()]


# ── Public constants ─────────────────────────────────────────────────────────

BOT_TOKEN: str | None = os.environ.get("BOT_TOKEN")
API_BASE_URL: str = os.environ.get("API_BASE_URL", "https://api.telegram.org").rstrip("/")
BASE_URL: str = f"{API_BASE_URL}/bot{BOT_TOKEN or ''}"

TRANSPORT: str = os.environ.get("TRANSPORT", "polling").strip().lower()

# Long polling
POLLING_TIMEOUT: int = _env_int("POLLING_TIMEOUT", 10) or 0
POLLING_INTERVAL: float = _env_float("POLLING_INTERVAL", 0.3)
POLLING_LIMIT: int | None = _env_int("POLLING_LIMIT", None)
POLLING_ALLOWED_UPDATES: list[str] = _parse_csv(os.environ.get("POLLING_ALLOWED_UPDATES"))

# Webhook receiver
WEBHOOK_HOST: str = os.environ.get("WEBHOOK_HOST", "0.0.0.0")
WEBHOOK_PORT: int = _env_int("WEBHOOK_PORT", 8443) or 8443
WEBHOOK_KEY: str | None = os.environ.get("WEBHOOK_KEY") or None
WEBHOOK_CERT: str | None = os.environ.get("WEBHOOK_CERT") or None
WEBHOOK_PFX: str | None = os.environ.get("WEBHOOK_PFX") or None
WEBHOOK_PFX_PASSWORD: str | None = os.environ.get("WEBHOOK_PFX_PASSWORD") or None
WEBHOOK_HEALTH_PATH: str = os.environ.get("WEBHOOK_HEALTH_PATH", "/healthz")
WEBHOOK_PATH: str | None = os.environ.get("WEBHOOK_PATH") or None
WEBHOOK_SECRET_TOKEN: str | None = os.environ.get("WEBHOOK_SECRET_TOKEN") or None

# Dispatch
ONLY_FIRST_MATCH: bool = _env_bool("ONLY_FIRST_MATCH", False)


# ── Startup diagnostics ─────────────────────────────────────────────────────

if BOT_TOKEN:
    logger.info("Config loaded — BOT_TOKEN is set, BASE_URL ready")
else:
    logger.warning("Config loaded — BOT_TOKEN is NOT set")

if TRANSPORT not in ("polling", "webhook"):
    logger.warning("Unknown TRANSPORT value, runner will fall back to polling", extra={"transport": TRANSPORT})

logger.debug(
    "Transport settings resolved",
    extra={
        "transport": TRANSPORT,
        "polling_timeout": POLLING_TIMEOUT,
        "polling_interval": POLLING_INTERVAL,
        "webhook_host": WEBHOOK_HOST,
        "webhook_port": WEBHOOK_PORT,
        "webhook_tls": bool(WEBHOOK_PFX or (WEBHOOK_KEY and WEBHOOK_CERT)),
    },
)

import logging
import os

logger = logging.getLogger(__name__)


def _canon_prefix(val):
    """
    Normalize API prefix to always be exactly like '/api':
      - defaults to '/api' when unset/empty
      - ensures a single leading slash
      - removes any trailing slash (except for root)
    """
    val = (val or "/api").strip()
    if not val.startswith("/"):
        val = "/" + val
    if len(val) > 1 and val.endswith("/"):
        val = val[:-1]
    return val


def _positive_number(env_var: str, default: float) -> float:
    raw_value = os.getenv(env_var)
    if raw_value is None:
        return default
    try:
        value = float(raw_value)
    except ValueError:
        logger.warning(
            "%s is not a valid number (got %r); defaulting to %s",
            env_var,
            raw_value,
            default,
        )
        return default
    if value <= 0:
        logger.warning("%s must be positive; defaulting to %s", env_var, default)
        return default
    return value


API_PREFIX = _canon_prefix(os.getenv("API_PREFIX"))

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")
GLOBAL_CHANNEL = os.getenv("GLOBAL_CHANNEL", "matches:global")

DEFAULT_OVERS = int(_positive_number("DEFAULT_OVERS", 20))
MATCH_LOCK_TIMEOUT_SECONDS = _positive_number("MATCH_LOCK_TIMEOUT_SECONDS", 5.0)


def get_role_codes() -> dict[str, str]:
    """Shared login codes, keyed by code, read at call time."""

    codes: dict[str, str] = {}
    scorer_code = (os.getenv("SCORER_CODE") or "").strip()
    if scorer_code:
        codes[scorer_code] = "scorer"
    admin_code = (os.getenv("ADMIN_CODE") or "").strip()
    if admin_code:
        codes[admin_code] = "admin"
    return codes

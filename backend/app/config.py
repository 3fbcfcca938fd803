import os

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


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


API_PREFIX = _canon_prefix(os.getenv("API_PREFIX"))

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")

# Default volleyball rules; a ruleset config on the match overrides these.
POINTS_TO = _int_env("VOLLEY_POINTS_TO", 25)
DECIDING_POINTS_TO = _int_env("VOLLEY_DECIDING_POINTS_TO", 15)
BEST_OF = _int_env("VOLLEY_BEST_OF", 5)
TIMEOUTS_PER_SET = _int_env("VOLLEY_TIMEOUTS_PER_SET", 2)
MAX_SUBSTITUTIONS_PER_SET = _int_env("VOLLEY_MAX_SUBSTITUTIONS", 6)

"""
Configuration constants for the Techflix recommender.

This module centralizes the limits and thresholds used by the engine and store.
Values can be overridden via environment variables.
"""
import os
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def _get_int_env(key: str, default: int, min_val: int = 1) -> int:
    """
    Safely parse integer from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated integer value
    """
    try:
        val = int(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


# Database Configuration
DB_PATH = Path(os.environ.get("TECHFLIX_DB", "data/techflix.db"))
POOL_MAX_SIZE = _get_int_env("TECHFLIX_POOL_SIZE", 50, min_val=1)
POOL_HEALTH_CHECK_INTERVAL = 300  # seconds between SELECT 1 probes per connection
SQLITE_BUSY_TIMEOUT_MS = 5000

# Result Limits
RECOMMENDATION_LIMIT = _get_int_env("TECHFLIX_RECOMMENDATION_LIMIT", 10, min_val=1)
INFLUENCER_LIMIT = _get_int_env("TECHFLIX_INFLUENCER_LIMIT", 10, min_val=1)

# Similarity threshold: overlap >= (OVERLAP_NUMERATOR * n + OVERLAP_OFFSET) // OVERLAP_DENOMINATOR
OVERLAP_NUMERATOR = 3
OVERLAP_OFFSET = 3
OVERLAP_DENOMINATOR = 4

# Import / Export
IMPORT_CHUNK_SIZE = 500
EXPORT_CHUNK_SIZE = 1000

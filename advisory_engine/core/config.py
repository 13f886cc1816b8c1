"""
Core configuration for the advisory engine

Centralizes the tunable knobs for stage timeouts, retry budgets, cache
lifetimes and quality-control thresholds. Every value can be overridden via
environment variables; components also accept explicit constructor
overrides so tests can run with tiny limits.
"""

import os
from typing import Optional


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)) or default)
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)) or default)
    except Exception:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


# ────────────────────────────────────────────────────────────
#  Analyzing stage watchdog
# ────────────────────────────────────────────────────────────
# Hard limit forces completion with whatever text has streamed so far
ANALYSIS_HARD_TIMEOUT_SECONDS: float = _env_float("ANALYSIS_HARD_TIMEOUT_SECONDS", 180.0)
# Soft limit only surfaces a recovery prompt when nothing has streamed
ANALYSIS_STUCK_TIMEOUT_SECONDS: float = _env_float("ANALYSIS_STUCK_TIMEOUT_SECONDS", 120.0)

# ────────────────────────────────────────────────────────────
#  Provider retry budgets (retries after the first attempt)
# ────────────────────────────────────────────────────────────
ROSTER_MAX_RETRIES: int = _env_int("ROSTER_MAX_RETRIES", 2)
STAGE_MAX_RETRIES: int = _env_int("STAGE_MAX_RETRIES", 2)

# ────────────────────────────────────────────────────────────
#  Quality control
# ────────────────────────────────────────────────────────────
QC_BATCH_SIZE: int = _env_int("QC_BATCH_SIZE", 10)
QC_BATCH_MAX_RETRIES: int = _env_int("QC_BATCH_MAX_RETRIES", 2)
QC_MAX_PARALLEL_BATCHES: int = _env_int("QC_MAX_PARALLEL_BATCHES", 3)
QC_SCORE_THRESHOLD: float = _env_float("QC_SCORE_THRESHOLD", 80.0)
QC_CORRECTION_ENABLED: bool = _env_bool("QC_CORRECTION_ENABLED", True)
# Upper bound for quality control once the hard limit has already fired
QC_TIMEOUT_SECONDS: float = _env_float("QC_TIMEOUT_SECONDS", 30.0)

# ────────────────────────────────────────────────────────────
#  Artifact cache lifetimes (seconds)
# ────────────────────────────────────────────────────────────
CACHE_TTL_ROSTER_SECONDS: int = _env_int("CACHE_TTL_ROSTER_SECONDS", 24 * 3600)
CACHE_TTL_ICP_PROFILE_SECONDS: int = _env_int("CACHE_TTL_ICP_PROFILE_SECONDS", 24 * 3600)
CACHE_TTL_PERSONA_SET_SECONDS: int = _env_int("CACHE_TTL_PERSONA_SET_SECONDS", 7 * 24 * 3600)
CACHE_KEY_PREFIX: str = os.getenv("CACHE_KEY_PREFIX", "advisory:cache:")

# ────────────────────────────────────────────────────────────
#  Checkpoints
# ────────────────────────────────────────────────────────────
CHECKPOINT_STREAM_INTERVAL_CHARS: int = _env_int("CHECKPOINT_STREAM_INTERVAL_CHARS", 5000)
CHECKPOINT_TTL_SECONDS: int = _env_int("CHECKPOINT_TTL_SECONDS", 30 * 24 * 3600)
CHECKPOINT_KEY_PREFIX: str = os.getenv("CHECKPOINT_KEY_PREFIX", "advisory:checkpoint:")
CHECKPOINT_TITLE_MAX_CHARS: int = _env_int("CHECKPOINT_TITLE_MAX_CHARS", 100)

# ────────────────────────────────────────────────────────────
#  Artifacts
# ────────────────────────────────────────────────────────────
PERSONA_TARGET_COUNT: int = _env_int("PERSONA_TARGET_COUNT", 5)

# ────────────────────────────────────────────────────────────
#  Storage
# ────────────────────────────────────────────────────────────
# Unset means the in-memory backends are used
REDIS_URL: Optional[str] = os.getenv("REDIS_URL") or None
REDIS_MAX_CONNECTIONS: int = _env_int("REDIS_MAX_CONNECTIONS", 20)

# Task shutdown
TASK_SHUTDOWN_TIMEOUT_SECONDS: float = _env_float("TASK_SHUTDOWN_TIMEOUT_SECONDS", 30.0)

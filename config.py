"""Environment-driven settings for the trip planner.

Every value is read once at import from the process environment, after the
project ``.env`` (if any) has been loaded.
"""

import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv(dotenv_path=Path(__file__).parent / ".env")


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


# ============================================================================
# Language Model Configuration
# ============================================================================

# Gemini chat model used by every stage
DEFAULT_MODEL_NAME: str = os.getenv("DEFAULT_MODEL_NAME", "gemini-2.0-flash")

# Fallback sampling temperature when a stage does not set its own
DEFAULT_TEMPERATURE: float = float(os.getenv("DEFAULT_TEMPERATURE", "0.3"))

# Hard wall-clock limits for a single completion and for a streamed one
LLM_TIMEOUT_SECONDS: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "30"))
LLM_STREAM_TIMEOUT_SECONDS: float = float(os.getenv("LLM_STREAM_TIMEOUT_SECONDS", "60"))

# Rate-limit retry policy (retries after the first attempt)
LLM_RATE_LIMIT_RETRIES: int = int(os.getenv("LLM_RATE_LIMIT_RETRIES", "2"))
LLM_BACKOFF_BASE_SECONDS: float = float(os.getenv("LLM_BACKOFF_BASE_SECONDS", "1.0"))
LLM_BACKOFF_JITTER_SECONDS: float = float(os.getenv("LLM_BACKOFF_JITTER_SECONDS", "0.5"))


# ============================================================================
# Agent Configuration
# ============================================================================

# Optimizer stage is skipped unless explicitly enabled (adds one extra LLM call)
OPTIMIZER_ENABLED: bool = _env_flag("OPTIMIZER_ENABLED")

# Stream itinerary tokens to live callers when they ask for it
ITINERARY_STREAMING_ENABLED: bool = _env_flag("ITINERARY_STREAMING_ENABLED", "true")

# Trip defaults
DEFAULT_CURRENCY: str = os.getenv("DEFAULT_CURRENCY", "INR")
DEFAULT_ORIGIN: str = os.getenv("DEFAULT_ORIGIN", "Your Location")

# Budget Agent defaults
BUDGET_DEFAULT_TARGET: float = float(os.getenv("BUDGET_DEFAULT_TARGET", "30000"))
BUDGET_VARIANCE_TOLERANCE: float = float(os.getenv("BUDGET_VARIANCE_TOLERANCE", "0.1"))


# ============================================================================
# Geocoding Configuration
# ============================================================================

GEOCODING_BASE_URL: str = os.getenv(
    "GEOCODING_BASE_URL", "https://nominatim.openstreetmap.org/search"
)
GEOCODING_USER_AGENT: str = os.getenv(
    "GEOCODING_USER_AGENT", "TripPlanner/1.0 (trip-planner@example.com)"
)
GEOCODING_TIMEOUT_SECONDS: float = float(os.getenv("GEOCODING_TIMEOUT_SECONDS", "5"))

# Nominatim usage policy: at most one request per second
GEOCODING_MIN_INTERVAL_SECONDS: float = float(os.getenv("GEOCODING_MIN_INTERVAL_SECONDS", "1.0"))


# ============================================================================
# Application Configuration
# ============================================================================

# HTTP server
API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
API_PORT: int = int(os.getenv("API_PORT", "8000"))
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

# CORS Configuration
CORS_ORIGINS: List[str] = os.getenv("CORS_ORIGINS", "*").split(",") if os.getenv("CORS_ORIGINS") else ["*"]


# ============================================================================
# Cache & Storage Configuration
# ============================================================================

# Plan fingerprint cache TTL in seconds (default: 24 hours)
PLAN_CACHE_TTL_SECONDS: int = int(os.getenv("PLAN_CACHE_TTL_SECONDS", "86400"))

# Trip storage backend; unset keeps trips in process memory
REDIS_URL: Optional[str] = os.getenv("REDIS_URL")

# Stored trip TTL in seconds (default: 7 days)
TRIP_TTL_SECONDS: int = int(os.getenv("TRIP_TTL_SECONDS", "604800"))


# ============================================================================
# API Keys
# ============================================================================

def get_google_api_key() -> Optional[str]:
    """Get Google API key (Gemini) from the environment."""
    return os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY")


# ============================================================================
# Validation
# ============================================================================

def validate_api_keys() -> List[str]:
    """Names of required credentials that are not configured."""
    missing = []

    if not get_google_api_key():
        missing.append("GOOGLE_API_KEY or GEMINI_API_KEY")

    return missing

"""Configuration for the assignment engine, Redis adapter and background worker."""

import os

REDIS_URL: str = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
REDIS_CONN_TIMEOUT: int = int(os.environ.get("REDIS_CONN_TIMEOUT", "5"))

# --- Agent directory ---
MAX_CONCURRENT_TICKETS: int = int(os.environ.get("MAX_CONCURRENT_TICKETS", "10"))
PERFORMANCE_WINDOW_DAYS: int = int(os.environ.get("PERFORMANCE_WINDOW_DAYS", "30"))
SNAPSHOT_WORKERS: int = int(os.environ.get("SNAPSHOT_WORKERS", "8"))

# Fallbacks when performance stats cannot be fetched (or the agent has no history)
DEFAULT_RESOLUTION_HOURS: float = float(os.environ.get("DEFAULT_RESOLUTION_HOURS", "24"))
DEFAULT_RESOLUTION_RATE: float = float(os.environ.get("DEFAULT_RESOLUTION_RATE", "0.8"))
DEFAULT_SATISFACTION_SCORE: float = float(os.environ.get("DEFAULT_SATISFACTION_SCORE", "4.0"))

# --- Caches ---
PROFILE_CACHE_TTL_SECONDS: int = int(os.environ.get("PROFILE_CACHE_TTL_SECONDS", "300"))
RULES_CACHE_SECONDS: int = int(os.environ.get("RULES_CACHE_SECONDS", "300"))

# --- Assignment ---
ASSIGN_MAX_ATTEMPTS: int = int(os.environ.get("ASSIGN_MAX_ATTEMPTS", "3"))

# --- Rebalancing ---
REBALANCE_TICKETS_PER_AGENT: int = int(os.environ.get("REBALANCE_TICKETS_PER_AGENT", "2"))
REBALANCE_INTERVAL_MINUTES: int = int(os.environ.get("REBALANCE_INTERVAL_MINUTES", "15"))

# --- SLA ---
SLA_WARNING_THRESHOLD: float = float(os.environ.get("SLA_WARNING_THRESHOLD", "0.75"))
SLA_SWEEP_INTERVAL_MINUTES: int = int(os.environ.get("SLA_SWEEP_INTERVAL_MINUTES", "5"))

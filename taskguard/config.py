import os
from dotenv import load_dotenv

load_dotenv()

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
DATABASE_URL = os.getenv("DATABASE_URL", "postgresql://user:pass@db:5432/taskguard")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
DEBUG = os.getenv("DEBUG", "false").lower() in ("1", "true", "yes")

# Redis pub/sub channel for job lifecycle events
EVENTS_CHANNEL = os.getenv("EVENTS_CHANNEL", "taskguard:events")

# Retry policy: delay = base * factor ** (attempt - 1) -> 30s, 90s, 270s
JOB_MAX_RETRIES = int(os.getenv("JOB_MAX_RETRIES", "3"))
JOB_RETRY_BASE_DELAY_SECONDS = int(os.getenv("JOB_RETRY_BASE_DELAY_SECONDS", "30"))
JOB_RETRY_BACKOFF_FACTOR = int(os.getenv("JOB_RETRY_BACKOFF_FACTOR", "3"))
THROTTLE_RESCHEDULE_SECONDS = int(os.getenv("THROTTLE_RESCHEDULE_SECONDS", "60"))
RETRY_CLAIM_TTL_HOURS = int(os.getenv("RETRY_CLAIM_TTL_HOURS", "1"))
UNIQUE_JOB_TTL_HOURS = int(os.getenv("UNIQUE_JOB_TTL_HOURS", "24"))
DEFAULT_RECURRING_INTERVAL_SECONDS = int(os.getenv("DEFAULT_RECURRING_INTERVAL_SECONDS", "3600"))

IDEMPOTENCY_TTL_HOURS = int(os.getenv("IDEMPOTENCY_TTL_HOURS", "24"))
DEAD_LETTER_RETENTION_DAYS = int(os.getenv("DEAD_LETTER_RETENTION_DAYS", "30"))

CIRCUIT_FAILURE_THRESHOLD = int(os.getenv("CIRCUIT_FAILURE_THRESHOLD", "5"))
CIRCUIT_COOLDOWN_SECONDS = int(os.getenv("CIRCUIT_COOLDOWN_SECONDS", "30"))

# Per-dependency overrides; anything not listed uses the defaults above
CIRCUIT_BREAKERS = {
    "payments": {"failure_threshold": 3, "cooldown": 60},
    "messaging": {"failure_threshold": 5, "cooldown": 30},
    "catalog": {"failure_threshold": 5, "cooldown": 30},
}

SAGA_LEASE_SECONDS = int(os.getenv("SAGA_LEASE_SECONDS", "300"))
SAGA_STALLED_AFTER_SECONDS = int(os.getenv("SAGA_STALLED_AFTER_SECONDS", "300"))

# Queue health alert thresholds; an alert fires when a value exceeds its threshold
QUEUE_HEALTH_THRESHOLDS = {
    "dlq_pending": int(os.getenv("QUEUE_HEALTH_DLQ_PENDING", "50")),
    "dead_lettered_per_hour": int(os.getenv("QUEUE_HEALTH_DEAD_LETTERED_PER_HOUR", "100")),
    "open_circuits": int(os.getenv("QUEUE_HEALTH_OPEN_CIRCUITS", "0")),
    "stalled_sagas": int(os.getenv("QUEUE_HEALTH_STALLED_SAGAS", "0")),
}

# Store outage during admission -> allow the request
RATE_LIMIT_FAIL_OPEN = os.getenv("RATE_LIMIT_FAIL_OPEN", "true").lower() in ("1", "true", "yes")
RATE_LIMIT_DEFAULT = {"limit": 100, "window": 60}
RATE_LIMITS = {
    "webhook": {"limit": 1000, "window": 60},
    "api": {"limit": 100, "window": 60},
    "admin": {"limit": 60, "window": 60},
    "auth": {"limit": 5, "window": 300},
    "message_send": {"limit": 30, "window": 60},
    "broadcast": {"limit": 10, "window": 3600},
    "export": {"limit": 5, "window": 3600},
}

# Priority lanes: Celery queue + admission budget per minute
LANES = {
    "critical": {"queue": "critical_priority", "rate_per_minute": 1000},
    "urgent": {"queue": "urgent_priority", "rate_per_minute": 100},
    "normal": {"queue": "normal_priority", "rate_per_minute": 50},
    "bulk": {"queue": "bulk_priority", "rate_per_minute": 20},
    "maintenance": {"queue": "maintenance_priority", "rate_per_minute": 10},
}

HTTP_CONNECT_TIMEOUT_S = float(os.getenv("HTTP_CONNECT_TIMEOUT_S", "3.0"))
HTTP_READ_TIMEOUT_S = float(os.getenv("HTTP_READ_TIMEOUT_S", "30.0"))

INTERNAL_API_KEY = os.getenv("INTERNAL_API_KEY", "")

# Outbound dependencies reached by the outbound_call job
SERVICES = {
    "payments": {
        "base_url": os.getenv("PAYMENTS_URL", "http://payments:9000"),
        "execute_path": "/v1/execute",
        "health_path": "/health",
        "timeout": 30,
        "auth": {"type": "bearer"},
    },
    "messaging": {
        "base_url": os.getenv("MESSAGING_URL", "http://messaging:9000"),
        "execute_path": "/v1/send",
        "health_path": "/health",
        "timeout": 15,
        "auth": {"type": "api_key_header", "header": "X-Internal-Key"},
    },
    "catalog": {
        "base_url": os.getenv("CATALOG_URL", "http://catalog:9000"),
        "execute_path": "/v1/sync",
        "health_path": "/health",
        "timeout": 60,
        "auth": {"type": "api_key_header", "header": "X-Internal-Key"},
    },
}

# Beat intervals (seconds)
IDEMPOTENCY_CLEANUP_INTERVAL_SECONDS = int(os.getenv("IDEMPOTENCY_CLEANUP_INTERVAL_SECONDS", "3600"))
RATE_WINDOW_CLEANUP_INTERVAL_SECONDS = int(os.getenv("RATE_WINDOW_CLEANUP_INTERVAL_SECONDS", "300"))
DEAD_LETTER_CLEANUP_INTERVAL_SECONDS = int(os.getenv("DEAD_LETTER_CLEANUP_INTERVAL_SECONDS", "86400"))
STALLED_SAGA_CHECK_INTERVAL_SECONDS = int(os.getenv("STALLED_SAGA_CHECK_INTERVAL_SECONDS", "300"))

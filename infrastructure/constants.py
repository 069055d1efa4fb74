"""
Constants Module - Centralized configuration values
===================================================

PURPOSE: Single source of truth for defaults used across the queue engine
PATTERN: Constants grouped by the component that consumes them
SCOPE: Application-wide defaults; runtime overrides come from settings
"""

# Queue entry statuses
STATUS_WAITING = 'waiting'
STATUS_RESERVED = 'reserved'
STATUS_CHARGING = 'charging'
STATUS_COMPLETED = 'completed'
STATUS_CANCELLED = 'cancelled'

ACTIVE_STATUSES = (STATUS_WAITING, STATUS_RESERVED, STATUS_CHARGING)
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_CANCELLED)

# Reasons recorded when an entry leaves the line
REASON_USER_CANCELLED = 'user_cancelled'
REASON_EXPIRED = 'expired'
REASON_ADMIN = 'admin'
LEAVE_REASONS = (REASON_USER_CANCELLED, REASON_EXPIRED, REASON_ADMIN)

# Reservation lifecycle
DEFAULT_RESERVATION_MINUTES = 15
STALLED_RESERVATION_GRACE_MINUTES = 5
RESERVATION_WARNING_MINUTES = 5
PROGRESS_REMINDER_MAX_POSITION = 3

# Station defaults
DEFAULT_MAX_QUEUE_LENGTH = 10
DEFAULT_AVERAGE_SESSION_MINUTES = 45
HEAD_OF_LINE_WAIT_MINUTES = 5
JOIN_POSITION_ATTEMPTS = 3

# Periodic process cadences (seconds)
CLEANUP_INTERVAL_SECONDS = 2 * 60
OPTIMIZATION_INTERVAL_SECONDS = 5 * 60
NOTIFICATIONS_INTERVAL_SECONDS = 3 * 60
ANALYTICS_INTERVAL_SECONDS = 10 * 60
SESSIONS_INTERVAL_SECONDS = 60
AVAILABILITY_ALERTS_INTERVAL_SECONDS = 4 * 60
PERFORMANCE_INTERVAL_SECONDS = 15 * 60

PROCESS_CLEANUP = 'cleanup'
PROCESS_OPTIMIZATION = 'optimization'
PROCESS_NOTIFICATIONS = 'notifications'
PROCESS_ANALYTICS = 'analytics'
PROCESS_SESSIONS = 'sessions'
PROCESS_AVAILABILITY_ALERTS = 'availability-alerts'
PROCESS_PERFORMANCE = 'performance'

# Ad-hoc task queue
DEFAULT_TASK_MAX_RETRIES = 3
TASK_BACKOFF_BASE_SECONDS = 60

# Session monitoring
ANOMALY_RATE_RATIO = 0.5
MAX_SESSION_MINUTES = 240

# Timeouts and housekeeping
EXTERNAL_CALL_TIMEOUT_SECONDS = 10.0
SHUTDOWN_GRACE_SECONDS = 5.0
ANALYTICS_CACHE_TTL_SECONDS = 30 * 60
LATENCY_WINDOW = 100

"""
Centralized configuration — all env vars, engine constants, enumerations.
"""
import os


def _env_bool(name, default=False):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FORMAT = os.getenv('LOG_FORMAT', 'text')

# ── Redis ─────────────────────────────────────────────────────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')

# ── PostgreSQL ────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///local.db')

# ── Slack notifications ──────────────────────────────────────────────────────
SLACK_WEBHOOK_URL = os.getenv('SLACK_WEBHOOK_URL')

# ── Stage health / SLA ────────────────────────────────────────────────────────
DEFAULT_SLA_DAYS = int(os.getenv('DEFAULT_SLA_DAYS', '7'))
HEALTH_WARNING_RATIO = float(os.getenv('HEALTH_WARNING_RATIO', '0.8'))

# ── Appointments ──────────────────────────────────────────────────────────────
DEFAULT_APPOINTMENT_MINUTES = int(os.getenv('DEFAULT_APPOINTMENT_MINUTES', '60'))
DEFAULT_APPOINTMENT_HOUR = int(os.getenv('DEFAULT_APPOINTMENT_HOUR', '14'))

# ── Scheduler (time_elapsed / inactivity driver) ─────────────────────────────
INACTIVITY_DAYS = int(os.getenv('INACTIVITY_DAYS', '3'))
SCHEDULER_INTERVAL_SECONDS = int(os.getenv('SCHEDULER_INTERVAL_SECONDS', '300'))
SCHEDULER_DEDUP_TTL = 86400 * 2  # 2 days

# ── Automation execution ─────────────────────────────────────────────────────
AUTOMATION_ASYNC = _env_bool('AUTOMATION_ASYNC')
AUTOMATION_MAX_CHAIN_DEPTH = int(os.getenv('AUTOMATION_MAX_CHAIN_DEPTH', '5'))
ACTION_TIMEOUT_SECONDS = float(os.getenv('ACTION_TIMEOUT_SECONDS', '30'))
ACTION_MAX_ATTEMPTS = int(os.getenv('ACTION_MAX_ATTEMPTS', '1'))
ACTION_RETRY_BASE_DELAY = float(os.getenv('ACTION_RETRY_BASE_DELAY', '0.5'))

# ── Entry enrollment status values ────────────────────────────────────────────
ENTRY_ACTIVE = 'active'
ENTRY_ARCHIVED = 'archived'

# ── Health values ─────────────────────────────────────────────────────────────
HEALTH_GREEN = 'green'
HEALTH_YELLOW = 'yellow'
HEALTH_RED = 'red'

# ── Automation trigger types ──────────────────────────────────────────────────
TRIGGER_TYPES = [
    'stage_change',
    'time_elapsed',
    'field_change',
    'lead_score',
    'inactivity',
]

# ── Automation action types ───────────────────────────────────────────────────
ACTION_TYPES = [
    'move_stage',
    'create_appointment',
    'send_notification',
    'update_field',
    'assign_user',
]

# ── Execution status values ───────────────────────────────────────────────────
EXECUTION_STATUSES = [
    'pending',
    'executing',
    'completed',
    'failed',
]

# ── Notification priorities ───────────────────────────────────────────────────
NOTIFICATION_PRIORITIES = ['low', 'medium', 'high', 'urgent']

"""Application constants and configuration values."""

from core.config import FRONTEND_URL

# CORS origins for development and production
_CORS_ORIGINS_RAW = [
    "http://localhost:3000",      # React dev server
    FRONTEND_URL,
]

# Filter out None values and empty strings to avoid CORS errors
CORS_ORIGINS = [origin for origin in _CORS_ORIGINS_RAW if origin and origin.strip()]

# Database connection settings
DB_POOL_RECYCLE_SECONDS = 300  # 5 minutes

# Weekday keys, Monday first (display order)
WEEKDAY_NAMES = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)

# Slots restored when a closed day with no history is re-enabled
DEFAULT_DAY_SLOTS = (("09:00", "12:00"), ("14:00", "18:00"))

# Hard default schedule: Mon-Fri 09:00-12:00 and 14:00-18:00, weekends closed
DEFAULT_WEEKLY_AVAILABILITY = {
    name: {
        "enabled": index < 5,
        "slots": [{"start": start, "end": end} for start, end in DEFAULT_DAY_SLOTS] if index < 5 else [],
    }
    for index, name in enumerate(WEEKDAY_NAMES)
}

# Clinic operating hours used when CLINIC_OPERATING_HOURS is not configured
DEFAULT_CLINIC_OPERATING_HOURS = {
    name: {
        "enabled": index < 6,
        "slots": [{"start": "08:00", "end": "20:00"}] if index < 6 else [],
    }
    for index, name in enumerate(WEEKDAY_NAMES)
}

# Treatment duration used when an appointment carries no duration
DEFAULT_TREATMENT_DURATION_MINUTES = 30

# Appointment statuses
STATUS_SCHEDULED = "scheduled"
STATUS_CONFIRMED = "confirmed"
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
STATUS_NO_SHOW = "no_show"

# Allowed status transitions: current status -> allowed next statuses
STATUS_TRANSITIONS = {
    STATUS_SCHEDULED: (STATUS_CONFIRMED, STATUS_CANCELLED, STATUS_NO_SHOW),
    STATUS_CONFIRMED: (STATUS_IN_PROGRESS, STATUS_CANCELLED, STATUS_NO_SHOW),
    STATUS_IN_PROGRESS: (STATUS_COMPLETED, STATUS_CANCELLED),
    STATUS_COMPLETED: (),
    STATUS_CANCELLED: (STATUS_SCHEDULED,),
    STATUS_NO_SHOW: (STATUS_SCHEDULED,),
}

# Statuses that never block a patient, provider or machine
INACTIVE_APPOINTMENT_STATUSES = (STATUS_CANCELLED, STATUS_NO_SHOW)

APPOINTMENT_PRIORITIES = ("low", "normal", "high", "urgent")
DEFAULT_APPOINTMENT_PRIORITY = "normal"

# Weeks shifted per duplication page
DUPLICATION_PAGE_DAYS = 7

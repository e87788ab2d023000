"""
Situation Reminder Service

Periodically asks users whether a tracked situation (hospital stay, trip,
recovery) is still ongoing, so the monitoring adjustments it enables do not
outlive it.

- Due situations: active, and never reminded or last reminded at least
  `reminder_frequency_days` ago
- Each due situation gets a low-severity `situation_reminder` alert and its
  `last_reminder_sent` is moved to now
- Runs as a background asyncio loop (every REMINDER_INTERVAL_SECONDS) and
  on demand through the API
"""

import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Dict, List, NamedTuple, Optional

from core.config import settings
from schemas import Alert, AlertSeverity, AlertType, Situation, SituationType
from services.repository import InMemoryRepository, get_repository
from utils.score_utils import days_between


# =============================================================================
# LOGGING
# =============================================================================

logger = logging.getLogger(__name__)


# =============================================================================
# REMINDER TEXT
# =============================================================================

class ReminderMessage(NamedTuple):
    title: str
    description: str


_REMINDER_TEMPLATES: Dict[SituationType, ReminderMessage] = {
    SituationType.HOSPITAL: ReminderMessage(
        title="Hospital Stay Status Check",
        description=(
            "It's been {days} days since you mentioned being in the hospital. "
            "Are you still there? If not, update your status so we can adjust "
            "your spending monitoring."
        ),
    ),
    SituationType.TRAVEL: ReminderMessage(
        title="Travel Status Check",
        description=(
            "It's been {days} days since you mentioned traveling. "
            "Are you still away from home? Update your travel status."
        ),
    ),
    SituationType.RECOVERY: ReminderMessage(
        title="Recovery Status Check",
        description=(
            "It's been {days} days since you mentioned being in recovery. "
            "How are you feeling? Update your recovery status."
        ),
    ),
}


def build_reminder(situation: Situation, now: datetime) -> ReminderMessage:
    """Title and description of the reminder for `situation`."""
    days = max(math.floor(days_between(situation.start_date, now)), 0)
    template = _REMINDER_TEMPLATES[situation.situation_type]
    return ReminderMessage(
        title=template.title,
        description=template.description.format(days=days),
    )


# =============================================================================
# PROCESSING
# =============================================================================

def process_reminders(
    repository: InMemoryRepository,
    now: Optional[datetime] = None,
) -> List[Alert]:
    """Raise reminders for every due situation and stamp them as sent."""
    now = now or datetime.now(timezone.utc)
    due = repository.get_situations_needing_reminders(now)

    alerts: List[Alert] = []
    for situation in due:
        message = build_reminder(situation, now)
        alerts.append(repository.create_alert(
            user_id=situation.user_id,
            alert_type=AlertType.SITUATION_REMINDER,
            severity=AlertSeverity.LOW,
            title=message.title,
            description=message.description,
            created_at=now,
        ))
        repository.update_situation(situation.id, last_reminder_sent=now)

    if alerts:
        logger.info(f"Created {len(alerts)} situation reminders")
    return alerts


# =============================================================================
# BACKGROUND LOOP
# =============================================================================

class ReminderState:
    """State of the background reminder loop."""

    def __init__(self):
        self.is_running: bool = False
        self.runs: int = 0
        self.reminders_sent: int = 0
        self.error_count: int = 0
        self.last_run: Optional[datetime] = None


_state = ReminderState()


async def run_reminder_loop(
    repository: Optional[InMemoryRepository] = None,
    interval_seconds: float = settings.REMINDER_INTERVAL_SECONDS,
):
    """
    Main reminder loop - runs continuously in background.

    Processes reminders immediately, then every `interval_seconds`.
    """
    repository = repository or get_repository()
    _state.is_running = True
    logger.info(f"Reminder service started (interval: {interval_seconds}s)")

    consecutive_errors = 0
    max_consecutive_errors = 5

    try:
        while _state.is_running:
            try:
                alerts = process_reminders(repository)
                _state.runs += 1
                _state.reminders_sent += len(alerts)
                _state.last_run = datetime.now(timezone.utc)
                consecutive_errors = 0

            except Exception as e:
                consecutive_errors += 1
                _state.error_count += 1
                logger.warning(
                    f"Reminder processing error (attempt {consecutive_errors}/{max_consecutive_errors}): {e}"
                )
                if consecutive_errors >= max_consecutive_errors:
                    logger.error("Too many consecutive errors, stopping reminder service")
                    _state.is_running = False
                    break

            await asyncio.sleep(interval_seconds)

    except asyncio.CancelledError:
        logger.info("Reminder service stopped")
        _state.is_running = False


def stop_reminders():
    """Stop the reminder loop after its current iteration."""
    _state.is_running = False
    logger.info("Reminder service stop requested")


def reset_reminders():
    """Reset the loop state (for testing)."""
    global _state
    _state = ReminderState()


def get_reminder_status() -> Dict:
    return {
        "is_running": _state.is_running,
        "runs": _state.runs,
        "reminders_sent": _state.reminders_sent,
        "error_count": _state.error_count,
        "last_run": _state.last_run.isoformat() if _state.last_run else None,
        "interval_seconds": settings.REMINDER_INTERVAL_SECONDS,
    }

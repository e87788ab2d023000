"""Unit tests for situation reminders"""

import asyncio
from datetime import timedelta

import pytest

from schemas import AlertSeverity, AlertType, Situation, SituationType
from services import reminder_service
from services.reminder_service import build_reminder, process_reminders
from tests.conftest import BASE_TIME


def _situation(situation_type, days_ago=4, **fields):
    return Situation(
        id=f"sit-{situation_type.value}",
        user_id="user-1",
        situation_type=situation_type,
        start_date=BASE_TIME - timedelta(days=days_ago),
        **fields,
    )


@pytest.mark.parametrize(
    "situation_type, title",
    [
        (SituationType.HOSPITAL, "Hospital Stay Status Check"),
        (SituationType.TRAVEL, "Travel Status Check"),
        (SituationType.RECOVERY, "Recovery Status Check"),
    ],
)
def test_reminder_text(situation_type, title):
    message = build_reminder(_situation(situation_type, days_ago=4), BASE_TIME + timedelta(hours=5))

    assert message.title == title
    assert message.description.startswith("It's been 4 days")


def test_process_reminders_alerts_and_stamps(repository):
    repository.create_situation(_situation(SituationType.TRAVEL, reminder_frequency_days=2))

    alerts = process_reminders(repository, now=BASE_TIME)

    assert len(alerts) == 1
    assert alerts[0].alert_type == AlertType.SITUATION_REMINDER
    assert alerts[0].severity == AlertSeverity.LOW
    assert alerts[0].transaction_id is None
    assert repository.get_situation("sit-travel").last_reminder_sent == BASE_TIME

    # Not due again until the frequency has elapsed
    assert process_reminders(repository, now=BASE_TIME + timedelta(days=1)) == []
    assert len(process_reminders(repository, now=BASE_TIME + timedelta(days=2))) == 1


def test_inactive_situations_are_skipped(repository):
    repository.create_situation(_situation(SituationType.HOSPITAL, is_active=False))
    assert process_reminders(repository, now=BASE_TIME) == []


def test_loop_processes_and_stops(repository):
    repository.create_situation(_situation(SituationType.RECOVERY))
    reminder_service.reset_reminders()

    async def run_once():
        task = asyncio.create_task(reminder_service.run_reminder_loop(repository, interval_seconds=60))
        await asyncio.sleep(0.05)
        reminder_service.stop_reminders()
        task.cancel()
        await task

    asyncio.run(run_once())

    status = reminder_service.get_reminder_status()
    assert status["runs"] == 1
    assert status["reminders_sent"] == 1
    assert not status["is_running"]
    assert len(repository.get_alerts_by_user("user-1")) == 1

"""
Booking notifications

The scheduling core only registers *when* a customer should be notified.
Registration runs as ARQ jobs and delivery (push / email / SMS) happens later
in the worker's cron job, see worker.py.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Protocol

from sqlalchemy.orm import Session

from ..config import FOLLOW_UP_DELAY_HOURS, REMINDER_OFFSETS_HOURS
from ..models import INACTIVE_BOOKING_STATUSES, Booking, ScheduledNotification
from .job_queue import JobQueue

logger = logging.getLogger(__name__)

REMINDER = "booking_reminder"
FOLLOW_UP = "booking_follow_up"


class NotificationSink(Protocol):
    def schedule_notification(
        self, user_id: str, type: str, scheduled_at: datetime, payload: dict
    ) -> bool: ...

    def cancel_scheduled_notifications(self, booking_id: str) -> int: ...


class DatabaseNotificationSink:
    """Stores notifications as ScheduledNotification rows for the worker to deliver"""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def schedule_notification(
        self, user_id: str, type: str, scheduled_at: datetime, payload: dict
    ) -> bool:
        """
        Store one notification. Returns False without writing when the booking
        is no longer active or the same notification is already scheduled, so
        retried and late jobs are harmless.
        """
        booking_id = payload.get("booking_id")
        db = self.session_factory()
        try:
            if booking_id:
                booking = db.query(Booking.status).filter(Booking.id == booking_id).first()
                if booking and booking.status in INACTIVE_BOOKING_STATUSES:
                    logger.info(f"⏭️ Not scheduling {type}: booking {booking_id} is {booking.status}")
                    return False

                duplicate = (
                    db.query(ScheduledNotification.id)
                    .filter(
                        ScheduledNotification.booking_id == booking_id,
                        ScheduledNotification.type == type,
                        ScheduledNotification.scheduled_at == scheduled_at,
                        ScheduledNotification.status == "scheduled",
                    )
                    .first()
                )
                if duplicate:
                    return False

            db.add(
                ScheduledNotification(
                    user_id=user_id,
                    booking_id=booking_id,
                    type=type,
                    scheduled_at=scheduled_at,
                    payload=payload,
                    status="scheduled",
                )
            )
            db.commit()
            logger.info(f"📅 Scheduled {type} for user {user_id} at {scheduled_at}")
            return True
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def cancel_scheduled_notifications(self, booking_id: str) -> int:
        """Cancel notifications for a booking that have not been sent yet"""
        db = self.session_factory()
        try:
            cancelled = (
                db.query(ScheduledNotification)
                .filter(
                    ScheduledNotification.booking_id == booking_id,
                    ScheduledNotification.status == "scheduled",
                )
                .update({"status": "cancelled"}, synchronize_session=False)
            )
            db.commit()
            logger.info(f"🗑️ Cancelled {cancelled} scheduled notification(s) for booking {booking_id}")
            return cancelled
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


def booking_payload(booking: Booking, **extra) -> dict:
    payload = {
        "booking_id": booking.id,
        "service_id": booking.service_id,
        "employee_id": booking.employee_id,
        "date_time": booking.date_time.isoformat(),
    }
    payload.update(extra)
    return payload


class BookingNotifier:
    """Turns booking events into notification jobs for the worker"""

    def __init__(
        self,
        jobs: JobQueue,
        reminder_offsets_hours: Optional[list[int]] = None,
        follow_up_delay_hours: int = FOLLOW_UP_DELAY_HOURS,
    ):
        self.jobs = jobs
        self.reminder_offsets_hours = (
            REMINDER_OFFSETS_HOURS if reminder_offsets_hours is None else reminder_offsets_hours
        )
        self.follow_up_delay_hours = follow_up_delay_hours

    def reminders_for(self, booking: Booking, now: datetime) -> list[dict]:
        """The standard reminders; lead times already in the past are skipped"""
        reminders = []
        for hours in self.reminder_offsets_hours:
            scheduled_at = booking.date_time - timedelta(hours=hours)
            if scheduled_at <= now:
                continue
            reminders.append(
                {
                    "user_id": booking.user_id,
                    "type": REMINDER,
                    "scheduled_at": scheduled_at,
                    "payload": booking_payload(booking, hours_before=hours),
                }
            )
        return reminders

    def schedule_reminders(self, booking: Booking, now: datetime) -> int:
        reminders = self.reminders_for(booking, now)
        for reminder in reminders:
            self.jobs.enqueue(
                "schedule_notification_task",
                reminder["user_id"],
                reminder["type"],
                reminder["scheduled_at"],
                reminder["payload"],
            )
        return len(reminders)

    def cancel_pending(self, booking: Booking) -> None:
        self.jobs.enqueue("cancel_notifications_task", booking.id)

    def replace_reminders(self, booking: Booking, now: datetime) -> None:
        # One job: the cancel and the new reminders must not interleave
        self.jobs.enqueue("replace_notifications_task", booking.id, self.reminders_for(booking, now))

    def schedule_follow_up(self, booking: Booking) -> None:
        service_end = booking.date_time + timedelta(minutes=booking.duration)
        self.jobs.enqueue(
            "schedule_notification_task",
            booking.user_id,
            FOLLOW_UP,
            service_end + timedelta(hours=self.follow_up_delay_hours),
            booking_payload(booking),
        )

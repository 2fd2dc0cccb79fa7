"""
Booking status transitions

Booking statuses: pending → confirmed → in_progress → completed
                  pending → rejected
                  confirmed → rescheduled → confirmed
                  any non-terminal → cancelled

completed, cancelled and rejected are terminal.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from ...models import Booking
from ...services.job_queue import JobQueue
from ...services.notification_service import BookingNotifier
from .exceptions import InvalidStateTransition
from .schemas import BookingPatch

logger = logging.getLogger(__name__)

VALID_TRANSITIONS = {
    "pending": ["confirmed", "cancelled", "rejected"],
    "confirmed": ["in_progress", "cancelled", "rescheduled"],
    "in_progress": ["completed", "cancelled"],
    "rescheduled": ["confirmed", "cancelled"],
    "completed": [],  # Terminal state
    "cancelled": [],  # Terminal state
    "rejected": [],  # Terminal state
}

TERMINAL_STATUSES = frozenset(s for s, targets in VALID_TRANSITIONS.items() if not targets)


def can_transition(current_status: str, new_status: str) -> bool:
    return new_status in VALID_TRANSITIONS.get(current_status, [])


def merge_notes(existing: Optional[str], addition: Optional[str]) -> Optional[str]:
    if not addition:
        return None
    return f"{existing}\n{addition}" if existing else addition


class BookingStateMachine:
    def __init__(
        self,
        notifier: BookingNotifier,
        jobs: JobQueue,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.notifier = notifier
        self.jobs = jobs
        self.clock = clock

    @staticmethod
    def validate(current_status: str, new_status: str) -> None:
        if not can_transition(current_status, new_status):
            raise InvalidStateTransition(current_status, new_status)

    def transition(self, booking: Booking, new_status: str, notes: Optional[str] = None) -> BookingPatch:
        """Validate the move and describe the resulting change; nothing is written here"""
        self.validate(booking.status, new_status)
        return BookingPatch(status=new_status, notes=merge_notes(booking.notes, notes))

    def run_side_effects(self, booking: Booking, previous_status: str) -> None:
        """Fire-and-forget effects keyed by the status ``booking`` just entered"""
        status = booking.status
        logger.info(f"🔄 Booking {booking.id} transitioned: {previous_status} → {status}")

        if status == "confirmed":
            self.notifier.replace_reminders(booking, self.clock())
        elif status == "cancelled":
            self.notifier.cancel_pending(booking)
        elif status == "completed":
            self.notifier.schedule_follow_up(booking)
            self.jobs.enqueue("mark_service_completed_task", booking.id)

"""Payment collaborator - releases a booking's payment for transfer once the service is done"""

import logging
from typing import Callable, Protocol

from sqlalchemy.orm import Session

from ..models import Payment

logger = logging.getLogger(__name__)


class PaymentCollaborator(Protocol):
    def mark_service_completed(self, booking_id: str) -> bool: ...


class DatabasePaymentCollaborator:
    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def mark_service_completed(self, booking_id: str) -> bool:
        """Flag held payments of ``booking_id`` as eligible for payout to the company"""
        db = self.session_factory()
        try:
            payments = (
                db.query(Payment)
                .filter(Payment.booking_id == booking_id, Payment.transfer_status == "held")
                .all()
            )
            if not payments:
                logger.info(f"ℹ️ No held payment for completed booking {booking_id}")
                return False

            for payment in payments:
                payment.transfer_status = "eligible"
            db.commit()
            logger.info(f"💰 {len(payments)} payment(s) for booking {booking_id} eligible for transfer")
            return True
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

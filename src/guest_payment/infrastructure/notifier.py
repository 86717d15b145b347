"""Outbox-backed payment email notifier.

Payment links are not sent inline: a message is written to the outbox
table in the same transaction as the token, and the mail delivery worker
picks it up from there.
"""

import structlog
from sqlalchemy.orm import Session

from guest_payment.domain.interfaces import IPaymentNotifier
from guest_payment.domain.models import Order
from guest_payment.infrastructure.models import OutboxMessage

logger = structlog.get_logger(__name__)

PAYMENT_EMAIL = "guest_payment_email"


class OutboxPaymentNotifier(IPaymentNotifier):
    def __init__(self, session: Session):
        self.session = session

    def send_payment_email(self, order: Order, email: str, link: str) -> bool:
        """Write a payment email message to the outbox.

        Args:
            order: Order the link pays for
            email: Recipient address
            link: Guest payment link

        Returns:
            True once the message is queued
        """
        self.session.add(
            OutboxMessage(
                aggregate_id=order.id,
                message_type=PAYMENT_EMAIL,
                payload={"order_id": order.id, "recipient": email, "link": link},
            )
        )
        self.session.flush()

        logger.info("outbox_message_written", aggregate_id=order.id, message_type=PAYMENT_EMAIL)
        return True

    def pending_messages(self, order_id: int) -> list[OutboxMessage]:
        return (
            self.session.query(OutboxMessage)
            .filter(OutboxMessage.aggregate_id == order_id, OutboxMessage.processed_at.is_(None))
            .order_by(OutboxMessage.id)
            .all()
        )

"""Payment repository for data access."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from billing_engine.models.payment import Payment, PaymentStatus


class PaymentRepository:
    """Repository for Payment model."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, payment_id: UUID) -> Payment | None:
        """Get a payment by ID."""
        return self.db.query(Payment).filter(Payment.id == payment_id).first()

    def get_for_update(self, payment_id: UUID) -> Payment | None:
        """Lock the payment row for the rest of the transaction."""
        return (
            self.db.query(Payment)
            .filter(Payment.id == payment_id)
            .populate_existing()
            .with_for_update()
            .first()
        )

    def get_by_invoice_id(self, invoice_id: UUID) -> list[Payment]:
        """Get all payments for an invoice, newest first."""
        return (
            self.db.query(Payment)
            .filter(Payment.invoice_id == invoice_id)
            .order_by(Payment.created_at.desc())
            .all()
        )

    def get_due_for_retry(self, now: datetime, max_retries: int) -> list[Payment]:
        """Get failed payments whose scheduled retry time has passed."""
        return (
            self.db.query(Payment)
            .filter(
                Payment.status == PaymentStatus.FAILED.value,
                Payment.next_retry_at.isnot(None),
                Payment.next_retry_at <= now,
                Payment.retry_count < max_retries,
            )
            .order_by(Payment.next_retry_at.asc())
            .all()
        )

    def create(
        self,
        invoice_id: UUID,
        user_id: str,
        amount: Decimal,
        subscription_id: UUID | None = None,
        currency: str = "USD",
        payment_method: str | None = None,
    ) -> Payment:
        """Create a new pending payment."""
        payment = Payment(
            invoice_id=invoice_id,
            subscription_id=subscription_id,
            user_id=user_id,
            amount=amount,
            currency=currency,
            status=PaymentStatus.PENDING.value,
            payment_method=payment_method,
            retry_count=0,
        )
        self.db.add(payment)
        self.db.commit()
        self.db.refresh(payment)
        return payment

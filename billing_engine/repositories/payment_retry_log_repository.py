from uuid import UUID

from sqlalchemy.orm import Session

from billing_engine.models.payment_retry_log import PaymentRetryLog


class PaymentRetryLogRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        payment_id: UUID,
        retry_attempt: int,
        status: str,
        failure_code: str | None = None,
        failure_reason: str | None = None,
    ) -> PaymentRetryLog:
        """Record an attempt inside the caller's transaction."""
        log = PaymentRetryLog(
            payment_id=payment_id,
            retry_attempt=retry_attempt,
            status=status,
            failure_code=failure_code,
            failure_reason=failure_reason,
        )
        self.db.add(log)
        self.db.flush()
        return log

    def get_by_payment_id(self, payment_id: UUID) -> list[PaymentRetryLog]:
        """Get all attempts for a payment, ordered by attempt number."""
        return (
            self.db.query(PaymentRetryLog)
            .filter(PaymentRetryLog.payment_id == payment_id)
            .order_by(PaymentRetryLog.retry_attempt.asc(), PaymentRetryLog.attempted_at.asc())
            .all()
        )

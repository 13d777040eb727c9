"""Payment attempts, bounded retry scheduling and refunds.

Each attempt runs in one transaction holding a row lock on the payment, so
concurrent attempts on the same payment are serialized. Retry timing is
persisted in ``next_retry_at`` and picked up by ``retry_failed_payments``.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from billing_engine.core.config import settings
from billing_engine.core.database import transaction
from billing_engine.core.exceptions import (
    GatewayFailure,
    InvalidStateError,
    OptimisticLockError,
    PaymentNotFoundError,
)
from billing_engine.models.payment import Payment, PaymentStatus
from billing_engine.models.payment_retry_log import PaymentRetryLog
from billing_engine.models.shared import ensure_utc, utc_now
from billing_engine.repositories.payment_repository import PaymentRepository
from billing_engine.repositories.payment_retry_log_repository import PaymentRetryLogRepository
from billing_engine.services.invoice_service import InvoiceService
from billing_engine.services.payment_gateway import FailureCode, GatewayResult, PaymentGateway
from billing_engine.services.subscription_manager import SubscriptionManager

logger = logging.getLogger(__name__)

_KNOWN_FAILURE_CODES = frozenset(code.value for code in FailureCode)


def _classify(failure_code: str | None) -> str:
    """Map a gateway failure code onto FailureCode, unknown codes to processing_error."""
    if failure_code in _KNOWN_FAILURE_CODES:
        return failure_code  # type: ignore[return-value]
    return FailureCode.PROCESSING_ERROR.value


class PaymentProcessor:
    """Service owning the Payment aggregate."""

    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway,
        invoice_service: InvoiceService | None = None,
        subscription_manager: SubscriptionManager | None = None,
        max_retries: int | None = None,
        retry_delay_hours: int | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.gateway = gateway
        self.payment_repo = PaymentRepository(db)
        self.retry_log_repo = PaymentRetryLogRepository(db)
        self.invoice_service = invoice_service or InvoiceService(db)
        self.subscription_manager = subscription_manager or SubscriptionManager(db, clock=clock)
        self.max_retries = max_retries if max_retries is not None else settings.MAX_PAYMENT_RETRIES
        self.retry_delay_hours = (
            retry_delay_hours if retry_delay_hours is not None else settings.RETRY_DELAY_HOURS
        )
        self.clock = clock

    # ── Queries ────────────────────────────────────────────────────────

    def get_payment_by_id(self, payment_id: UUID) -> Payment | None:
        return self.payment_repo.get_by_id(payment_id)

    def require_payment(self, payment_id: UUID) -> Payment:
        payment = self.payment_repo.get_by_id(payment_id)
        if not payment:
            raise PaymentNotFoundError(payment_id)
        return payment

    def get_invoice_payments(self, invoice_id: UUID) -> list[Payment]:
        return self.payment_repo.get_by_invoice_id(invoice_id)

    def get_payment_retry_logs(self, payment_id: UUID) -> list[PaymentRetryLog]:
        return self.retry_log_repo.get_by_payment_id(payment_id)

    # ── Mutations ──────────────────────────────────────────────────────

    def create_payment(
        self,
        invoice_id: UUID,
        subscription_id: UUID | None,
        user_id: str,
        amount: Decimal,
        payment_method: str | None = None,
        currency: str = "USD",
    ) -> Payment:
        amount = amount if isinstance(amount, Decimal) else Decimal(str(amount))
        if amount <= 0:
            raise ValueError("Payment amount must be positive")

        payment = self.payment_repo.create(
            invoice_id=invoice_id,
            user_id=user_id,
            amount=amount,
            subscription_id=subscription_id,
            currency=currency,
            payment_method=payment_method,
        )
        logger.info("Payment created: %s (invoice=%s, amount=%s)", payment.id, invoice_id, amount)
        return payment

    def process_payment(self, payment_id: UUID, payment_gateway: str | None = None) -> Payment:
        """Run one attempt against the gateway.

        Gateway errors never propagate: they are stored on the payment and a
        retry is scheduled until ``max_retries`` attempts have failed.
        """
        with transaction(self.db):
            payment = self._lock(payment_id)
            if not self._can_attempt(payment):
                raise InvalidStateError(
                    f"Payment cannot be processed (status: {payment.status}, "
                    f"retries: {payment.retry_count})",
                    context={"payment_id": str(payment_id), "status": payment.status},
                )
            result, attempt = self._record_attempt(payment, payment_gateway or self.gateway.name)

        return self._finish_attempt(payment, result, attempt)

    def retry_failed_payments(self) -> int:
        """Re-attempt every failed payment whose retry time has passed.

        Returns:
            Number of attempts made.
        """
        now = self._now()
        due = self.payment_repo.get_due_for_retry(now, self.max_retries)
        attempted = 0

        for payment in due:
            payment_id = payment.id
            try:
                if self._retry_due(payment_id, now):  # type: ignore[arg-type]
                    attempted += 1
            except Exception:
                logger.exception("Failed to retry payment %s", payment_id)

        logger.info("Payment retry sweep: %d of %d due payments attempted", attempted, len(due))
        return attempted

    def refund_payment(self, payment_id: UUID) -> Payment:
        """Mark a succeeded payment refunded and void its invoice."""
        with transaction(self.db):
            payment = self._lock(payment_id)
            if payment.status != PaymentStatus.SUCCEEDED.value:
                raise InvalidStateError(
                    f"Only succeeded payments can be refunded (status: {payment.status})",
                    context={"payment_id": str(payment_id), "status": payment.status},
                )
            payment.status = PaymentStatus.REFUNDED.value  # type: ignore[assignment]
            payment.refunded_at = self._now()  # type: ignore[assignment]
            self.invoice_service.void_invoice(payment.invoice_id)  # type: ignore[arg-type]

        self.db.refresh(payment)
        logger.info("Payment %s refunded", payment_id)
        return payment

    # ── Internals ──────────────────────────────────────────────────────

    def _now(self) -> datetime:
        return ensure_utc(self.clock())  # type: ignore[return-value]

    def _lock(self, payment_id: UUID) -> Payment:
        payment = self.payment_repo.get_for_update(payment_id)
        if not payment:
            raise PaymentNotFoundError(payment_id)
        return payment

    def _can_attempt(self, payment: Payment) -> bool:
        if payment.status == PaymentStatus.PENDING.value:
            return True
        return (
            payment.status == PaymentStatus.FAILED.value
            and int(payment.retry_count) < self.max_retries  # type: ignore[arg-type]
        )

    def _is_due(self, payment: Payment, now: datetime) -> bool:
        next_retry_at = ensure_utc(payment.next_retry_at)  # type: ignore[arg-type]
        return (
            payment.status == PaymentStatus.FAILED.value
            and next_retry_at is not None
            and next_retry_at <= now
            and self._can_attempt(payment)
        )

    def _submit(self, payment: Payment) -> GatewayResult:
        """Call the gateway; every outcome comes back as a result, never an exception."""
        try:
            result = self.gateway.submit(payment)
        except GatewayFailure as e:
            return GatewayResult(
                success=False,
                failure_code=_classify(e.failure_code),
                failure_message=e.message,
            )
        except Exception as e:
            logger.warning("Gateway error for payment %s: %s", payment.id, e)
            return GatewayResult(
                success=False,
                failure_code=FailureCode.PROCESSING_ERROR.value,
                failure_message=str(e),
            )
        if not result.success:
            return GatewayResult(
                success=False,
                failure_code=_classify(result.failure_code),
                failure_message=result.failure_message,
            )
        return result

    def _retry_due(self, payment_id: UUID, now: datetime) -> bool:
        """Retry one payment selected by the sweep.

        The row is re-checked under the lock; a payment handled by another
        worker since it was selected is skipped and False returned.
        """
        with transaction(self.db):
            payment = self._lock(payment_id)
            if not self._is_due(payment, now):
                logger.debug("Payment %s no longer due for retry, skipping", payment_id)
                return False
            result, attempt = self._record_attempt(
                payment, str(payment.payment_gateway or self.gateway.name)
            )

        self._finish_attempt(payment, result, attempt)
        return True

    def _record_attempt(self, payment: Payment, gateway_name: str) -> tuple[GatewayResult, int]:
        """Submit a locked payment and store the outcome in the open transaction."""
        payment.status = PaymentStatus.PROCESSING.value  # type: ignore[assignment]
        payment.payment_gateway = gateway_name  # type: ignore[assignment]
        self.db.flush()

        result = self._submit(payment)
        now = self._now()
        attempt = int(payment.retry_count) + 1  # type: ignore[arg-type]

        if result.success:
            payment.status = PaymentStatus.SUCCEEDED.value  # type: ignore[assignment]
            payment.gateway_transaction_id = result.transaction_id  # type: ignore[assignment]
            payment.processed_at = now  # type: ignore[assignment]
            payment.next_retry_at = None  # type: ignore[assignment]
            payment.failure_code = None  # type: ignore[assignment]
            payment.failure_message = None  # type: ignore[assignment]
            self.invoice_service.mark_invoice_as_paid(payment.invoice_id)  # type: ignore[arg-type]
        else:
            payment.status = PaymentStatus.FAILED.value  # type: ignore[assignment]
            payment.retry_count = attempt  # type: ignore[assignment]
            payment.failure_code = result.failure_code  # type: ignore[assignment]
            payment.failure_message = result.failure_message  # type: ignore[assignment]
            if attempt < self.max_retries:
                payment.next_retry_at = now + timedelta(hours=self.retry_delay_hours)  # type: ignore[assignment]
            else:
                payment.next_retry_at = None  # type: ignore[assignment]

        self.retry_log_repo.create(
            payment.id,  # type: ignore[arg-type]
            retry_attempt=attempt,
            status=str(payment.status),
            failure_code=result.failure_code,
            failure_reason=result.failure_message,
        )
        return result, attempt

    def _finish_attempt(self, payment: Payment, result: GatewayResult, attempt: int) -> Payment:
        """Post-commit logging and subscription status sync."""
        self.db.refresh(payment)
        if result.success:
            logger.info(
                "Payment %s succeeded on attempt %d (txn=%s)",
                payment.id,
                attempt,
                payment.gateway_transaction_id,
            )
        elif payment.next_retry_at is not None:
            logger.warning(
                "Payment %s failed on attempt %d (%s), retry at %s",
                payment.id,
                attempt,
                payment.failure_code,
                payment.next_retry_at,
            )
        else:
            logger.warning(
                "Payment %s failed on attempt %d (%s), retries exhausted",
                payment.id,
                attempt,
                payment.failure_code,
            )

        self._sync_subscription(payment, succeeded=result.success)
        return payment

    def _sync_subscription(self, payment: Payment, succeeded: bool) -> None:
        if payment.subscription_id is None:
            return
        subscription_id: UUID = payment.subscription_id  # type: ignore[assignment]
        try:
            if succeeded:
                self.subscription_manager.recover_from_past_due(subscription_id)
            elif payment.next_retry_at is None:
                self.subscription_manager.mark_past_due(subscription_id)
        except OptimisticLockError:
            logger.warning(
                "Subscription %s changed concurrently; status not synced for payment %s",
                subscription_id,
                payment.id,
            )

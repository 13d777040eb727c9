"""Tests for PaymentProcessor attempts, retry scheduling and refunds."""

import uuid
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest

from billing_engine.core.exceptions import (
    GatewayFailure,
    InvalidStateError,
    OptimisticLockError,
    PaymentNotFoundError,
)
from billing_engine.models.invoice import InvoiceStatus
from billing_engine.models.payment import PaymentStatus
from billing_engine.models.shared import ensure_utc
from billing_engine.models.subscription import SubscriptionStatus
from billing_engine.schemas.payment import PaymentResponse, PaymentRetryLogResponse
from billing_engine.services.invoice_service import InvoiceService
from billing_engine.services.payment_gateway import FailureCode, GatewayResult
from billing_engine.services.payment_processor import PaymentProcessor
from billing_engine.services.subscription_manager import SubscriptionManager
from tests.conftest import TEST_USER_ID, ScriptedGateway

DECLINED = GatewayResult.failed(FailureCode.CARD_DECLINED, "Card declined")
NO_FUNDS = GatewayResult.failed(FailureCode.INSUFFICIENT_FUNDS, "Insufficient funds")
OK = GatewayResult.succeeded("txn_123")


@pytest.fixture
def manager(db_session, clock):
    return SubscriptionManager(db_session, clock=clock)


@pytest.fixture
def subscription(manager, plan_factory):
    plan = plan_factory(price="20.00")
    return manager.create_subscription(
        TEST_USER_ID, plan.id, start_date=datetime(2024, 4, 1, tzinfo=UTC)
    )


@pytest.fixture
def invoice(db_session, subscription):
    invoice = InvoiceService(db_session).create_invoice(
        TEST_USER_ID, Decimal("20.00"), subscription_id=subscription.id
    )
    db_session.commit()
    return invoice


@pytest.fixture
def make_processor(db_session, manager, clock):
    def _factory(*results, **kwargs) -> PaymentProcessor:
        return PaymentProcessor(
            db_session,
            ScriptedGateway(*results),
            subscription_manager=manager,
            max_retries=kwargs.pop("max_retries", 3),
            retry_delay_hours=kwargs.pop("retry_delay_hours", 24),
            clock=clock,
            **kwargs,
        )

    return _factory


@pytest.fixture
def payment_factory(invoice, subscription):
    def _factory(processor: PaymentProcessor, amount: str = "20.00"):
        return processor.create_payment(
            invoice.id, subscription.id, TEST_USER_ID, Decimal(amount), payment_method="card"
        )

    return _factory


class TestCreatePayment:
    def test_creates_pending_payment(self, make_processor, payment_factory, invoice):
        processor = make_processor()

        payment = payment_factory(processor)

        assert payment.status == PaymentStatus.PENDING.value
        assert payment.retry_count == 0
        assert payment.next_retry_at is None
        assert payment.invoice_id == invoice.id
        assert payment.amount == Decimal("20.00")
        assert payment.payment_method == "card"

    @pytest.mark.parametrize("amount", ["0", "-5.00"])
    def test_rejects_non_positive_amount(self, make_processor, payment_factory, amount):
        with pytest.raises(ValueError, match="must be positive"):
            payment_factory(make_processor(), amount=amount)

    def test_response_schema(self, make_processor, payment_factory):
        payment = payment_factory(make_processor())

        response = PaymentResponse.model_validate(payment)

        assert response.status == PaymentStatus.PENDING
        assert response.retry_count == 0


class TestProcessPayment:
    def test_success(self, make_processor, payment_factory, invoice, clock, db_session):
        processor = make_processor(OK)
        payment = payment_factory(processor)

        result = processor.process_payment(payment.id)

        assert result.status == PaymentStatus.SUCCEEDED.value
        assert result.gateway_transaction_id == "txn_123"
        assert result.payment_gateway == "scripted"
        assert ensure_utc(result.processed_at) == clock.now
        assert result.retry_count == 0
        assert result.next_retry_at is None

        db_session.refresh(invoice)
        assert invoice.status == InvoiceStatus.PAID.value

        logs = processor.get_payment_retry_logs(payment.id)
        assert [(log.retry_attempt, log.status) for log in logs] == [(1, "succeeded")]

    def test_gateway_name_override(self, make_processor, payment_factory):
        processor = make_processor(OK)
        payment = payment_factory(processor)

        result = processor.process_payment(payment.id, payment_gateway="manual")

        assert result.payment_gateway == "manual"

    def test_failure_schedules_retry(self, make_processor, payment_factory, clock):
        processor = make_processor(DECLINED)
        payment = payment_factory(processor)

        result = processor.process_payment(payment.id)

        assert result.status == PaymentStatus.FAILED.value
        assert result.retry_count == 1
        assert result.failure_code == "card_declined"
        assert result.failure_message == "Card declined"
        assert ensure_utc(result.next_retry_at) == clock.now + timedelta(hours=24)

        log = processor.get_payment_retry_logs(payment.id)[0]
        response = PaymentRetryLogResponse.model_validate(log)
        assert response.retry_attempt == 1
        assert response.status == PaymentStatus.FAILED
        assert response.failure_code == "card_declined"
        assert response.failure_reason == "Card declined"

    def test_gateway_exception_is_processing_error(self, make_processor, payment_factory):
        processor = make_processor(ConnectionError("gateway unreachable"))
        payment = payment_factory(processor)

        result = processor.process_payment(payment.id)

        assert result.status == PaymentStatus.FAILED.value
        assert result.failure_code == FailureCode.PROCESSING_ERROR.value
        assert result.failure_message == "gateway unreachable"
        assert result.next_retry_at is not None

    def test_gateway_failure_keeps_its_code(self, make_processor, payment_factory):
        processor = make_processor(GatewayFailure("expired_card", "Card expired"))
        payment = payment_factory(processor)

        result = processor.process_payment(payment.id)

        assert result.failure_code == "expired_card"
        assert result.failure_message == "Card expired"

    def test_gateway_failure_with_unknown_code_is_recorded(self, make_processor, payment_factory, clock):
        processor = make_processor(GatewayFailure("do_not_honor", "Do not honor"))
        payment = payment_factory(processor)

        result = processor.process_payment(payment.id)

        assert result.status == PaymentStatus.FAILED.value
        assert result.failure_code == FailureCode.PROCESSING_ERROR.value
        assert result.failure_message == "Do not honor"
        assert result.retry_count == 1
        assert ensure_utc(result.next_retry_at) == clock.now + timedelta(hours=24)
        logs = processor.get_payment_retry_logs(payment.id)
        assert len(logs) == 1
        assert logs[0].failure_code == FailureCode.PROCESSING_ERROR.value

    def test_returned_result_with_unknown_code_is_processing_error(self, make_processor, payment_factory):
        processor = make_processor(
            GatewayResult(success=False, failure_code="do_not_honor", failure_message="Do not honor")
        )
        payment = payment_factory(processor)

        result = processor.process_payment(payment.id)

        assert result.failure_code == FailureCode.PROCESSING_ERROR.value
        assert result.failure_message == "Do not honor"
        assert result.retry_count == 1

    def test_three_failures_exhaust_retries(self, make_processor, payment_factory, subscription, manager):
        processor = make_processor(DECLINED, NO_FUNDS, DECLINED)
        payment = payment_factory(processor)

        for _ in range(3):
            result = processor.process_payment(payment.id)

        assert result.status == PaymentStatus.FAILED.value
        assert result.retry_count == 3
        assert result.next_retry_at is None
        logs = processor.get_payment_retry_logs(payment.id)
        assert [log.retry_attempt for log in logs] == [1, 2, 3]
        assert [log.failure_code for log in logs] == [
            "card_declined",
            "insufficient_funds",
            "card_declined",
        ]

        sub = manager.require_subscription(subscription.id)
        assert sub.status == SubscriptionStatus.PAST_DUE.value

    def test_exhausted_payment_cannot_be_processed(self, make_processor, payment_factory):
        processor = make_processor(DECLINED, max_retries=1)
        payment = payment_factory(processor)
        processor.process_payment(payment.id)

        with pytest.raises(InvalidStateError):
            processor.process_payment(payment.id)

        assert len(processor.get_payment_retry_logs(payment.id)) == 1

    def test_succeeded_payment_cannot_be_processed_again(self, make_processor, payment_factory):
        processor = make_processor(OK)
        payment = payment_factory(processor)
        processor.process_payment(payment.id)

        with pytest.raises(InvalidStateError):
            processor.process_payment(payment.id)

        assert len(processor.gateway.calls) == 1

    def test_missing_payment(self, make_processor):
        with pytest.raises(PaymentNotFoundError):
            make_processor().process_payment(uuid.uuid4())

    def test_success_after_failure_clears_failure_fields(self, make_processor, payment_factory):
        processor = make_processor(DECLINED, OK)
        payment = payment_factory(processor)
        processor.process_payment(payment.id)

        result = processor.process_payment(payment.id)

        assert result.status == PaymentStatus.SUCCEEDED.value
        assert result.retry_count == 1
        assert result.failure_code is None
        assert result.failure_message is None
        assert result.next_retry_at is None
        assert [log.retry_attempt for log in processor.get_payment_retry_logs(payment.id)] == [1, 2]

    def test_success_recovers_past_due_subscription(
        self, make_processor, payment_factory, subscription, manager
    ):
        manager.mark_past_due(subscription.id)
        processor = make_processor(OK)
        payment = payment_factory(processor)

        processor.process_payment(payment.id)

        assert manager.require_subscription(subscription.id).status == SubscriptionStatus.ACTIVE.value

    def test_lock_conflict_on_subscription_is_not_raised(
        self, make_processor, payment_factory, manager, caplog
    ):
        processor = make_processor(DECLINED, max_retries=1)
        payment = payment_factory(processor)

        with patch.object(
            manager, "mark_past_due", side_effect=OptimisticLockError(payment.subscription_id, 0)
        ):
            result = processor.process_payment(payment.id)

        assert result.status == PaymentStatus.FAILED.value
        assert "changed concurrently" in caplog.text

    def test_retry_log_failure_rolls_back_attempt(self, make_processor, payment_factory):
        processor = make_processor(DECLINED)
        payment = payment_factory(processor)

        with patch.object(processor.retry_log_repo, "create", side_effect=RuntimeError("disk full")):
            with pytest.raises(RuntimeError):
                processor.process_payment(payment.id)

        stored = processor.require_payment(payment.id)
        assert stored.status == PaymentStatus.PENDING.value
        assert stored.retry_count == 0


class TestRetryFailedPayments:
    def test_retries_due_payments(self, make_processor, payment_factory, clock):
        processor = make_processor(DECLINED, OK)
        payment = payment_factory(processor)
        processor.process_payment(payment.id)

        assert processor.retry_failed_payments() == 0

        clock.now += timedelta(hours=24)
        assert processor.retry_failed_payments() == 1
        assert processor.require_payment(payment.id).status == PaymentStatus.SUCCEEDED.value

    def test_retry_keeps_the_gateway_of_the_first_attempt(self, make_processor, payment_factory, clock):
        processor = make_processor(DECLINED, OK)
        payment = payment_factory(processor)
        processor.process_payment(payment.id, payment_gateway="manual")

        clock.now += timedelta(hours=24)
        assert processor.retry_failed_payments() == 1

        retried = processor.require_payment(payment.id)
        assert retried.status == PaymentStatus.SUCCEEDED.value
        assert retried.payment_gateway == "manual"

    def test_payment_no_longer_due_is_skipped(self, make_processor, payment_factory, clock):
        processor = make_processor(DECLINED, OK)
        payment = payment_factory(processor)
        processor.process_payment(payment.id)

        assert processor._retry_due(payment.id, clock.now) is False
        assert len(processor.gateway.calls) == 1
        assert processor.require_payment(payment.id).retry_count == 1

    def test_exhausted_payment_never_selected(self, make_processor, payment_factory, clock):
        processor = make_processor(DECLINED)
        payment = payment_factory(processor)
        for _ in range(3):
            processor.process_payment(payment.id)
        before = PaymentResponse.model_validate(processor.require_payment(payment.id))

        clock.now += timedelta(days=30)
        assert processor.retry_failed_payments() == 0

        after = PaymentResponse.model_validate(processor.require_payment(payment.id))
        assert after == before
        assert len(processor.get_payment_retry_logs(payment.id)) == 3

    def test_sweep_runs_until_exhausted(self, make_processor, payment_factory, clock):
        processor = make_processor(DECLINED)
        payment = payment_factory(processor)
        processor.process_payment(payment.id)

        for _ in range(5):
            clock.now += timedelta(hours=24)
            processor.retry_failed_payments()

        stored = processor.require_payment(payment.id)
        assert stored.retry_count == 3
        assert stored.next_retry_at is None
        assert len(processor.gateway.calls) == 3

    def test_pending_payments_are_not_swept(self, make_processor, payment_factory, clock):
        processor = make_processor(OK)
        payment_factory(processor)

        clock.now += timedelta(days=2)
        assert processor.retry_failed_payments() == 0

    def test_failure_on_one_row_does_not_stop_sweep(self, make_processor, payment_factory, clock):
        processor = make_processor(DECLINED, DECLINED, OK)
        first = payment_factory(processor)
        second = payment_factory(processor)
        processor.process_payment(first.id)
        processor.process_payment(second.id)
        clock.now += timedelta(hours=24)
        original = processor._retry_due

        def flaky(payment_id, *args, **kwargs):
            if payment_id == first.id:
                raise RuntimeError("boom")
            return original(payment_id, *args, **kwargs)

        with patch.object(processor, "_retry_due", side_effect=flaky):
            attempted = processor.retry_failed_payments()

        assert attempted == 1
        assert processor.require_payment(second.id).status == PaymentStatus.SUCCEEDED.value
        assert processor.require_payment(first.id).retry_count == 1


class TestRefundPayment:
    def test_refund_succeeded_payment(self, make_processor, payment_factory, invoice, clock, db_session):
        processor = make_processor(OK)
        payment = payment_factory(processor)
        processor.process_payment(payment.id)

        refunded = processor.refund_payment(payment.id)

        assert refunded.status == PaymentStatus.REFUNDED.value
        assert ensure_utc(refunded.refunded_at) == clock.now
        db_session.refresh(invoice)
        assert invoice.status == InvoiceStatus.VOID.value

    def test_refund_pending_payment_rejected(self, make_processor, payment_factory):
        processor = make_processor()
        payment = payment_factory(processor)

        with pytest.raises(InvalidStateError):
            processor.refund_payment(payment.id)

    def test_refund_twice_rejected(self, make_processor, payment_factory):
        processor = make_processor(OK)
        payment = payment_factory(processor)
        processor.process_payment(payment.id)
        processor.refund_payment(payment.id)

        with pytest.raises(InvalidStateError):
            processor.refund_payment(payment.id)

    def test_refund_missing(self, make_processor):
        with pytest.raises(PaymentNotFoundError):
            make_processor().refund_payment(uuid.uuid4())


class TestQueries:
    def test_get_invoice_payments(self, make_processor, payment_factory, invoice):
        processor = make_processor()
        first = payment_factory(processor)
        second = payment_factory(processor)

        ids = {p.id for p in processor.get_invoice_payments(invoice.id)}

        assert ids == {first.id, second.id}

    def test_get_payment_by_id(self, make_processor, payment_factory):
        processor = make_processor()
        payment = payment_factory(processor)

        assert processor.get_payment_by_id(payment.id).id == payment.id
        assert processor.get_payment_by_id(uuid.uuid4()) is None

    def test_require_payment_missing(self, make_processor):
        with pytest.raises(PaymentNotFoundError):
            make_processor().require_payment(uuid.uuid4())

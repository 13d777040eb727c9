from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from billing_engine.models.invoice import Invoice, InvoiceStatus


class InvoiceRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, invoice_id: UUID) -> Invoice | None:
        return self.db.query(Invoice).filter(Invoice.id == invoice_id).first()

    def create(
        self,
        user_id: str,
        amount: Decimal,
        subscription_id: UUID | None = None,
        currency: str = "USD",
    ) -> Invoice:
        invoice = Invoice(
            user_id=user_id,
            subscription_id=subscription_id,
            amount=amount,
            currency=currency,
            status=InvoiceStatus.OPEN.value,
        )
        self.db.add(invoice)
        self.db.flush()
        return invoice

    def mark_paid(self, invoice_id: UUID, paid_at: datetime) -> Invoice | None:
        invoice = self.get_by_id(invoice_id)
        if not invoice:
            return None
        invoice.status = InvoiceStatus.PAID.value  # type: ignore[assignment]
        invoice.paid_at = paid_at  # type: ignore[assignment]
        self.db.flush()
        return invoice

    def void(self, invoice_id: UUID, voided_at: datetime) -> Invoice | None:
        invoice = self.get_by_id(invoice_id)
        if not invoice:
            return None
        invoice.status = InvoiceStatus.VOID.value  # type: ignore[assignment]
        invoice.voided_at = voided_at  # type: ignore[assignment]
        self.db.flush()
        return invoice

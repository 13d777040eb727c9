"""Minimal invoice bookkeeping used by payment processing.

Writes join the caller's transaction; nothing here commits.
"""

import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from billing_engine.models.invoice import Invoice
from billing_engine.models.shared import utc_now
from billing_engine.repositories.invoice_repository import InvoiceRepository

logger = logging.getLogger(__name__)


class InvoiceService:
    def __init__(self, db: Session):
        self.db = db
        self.invoice_repo = InvoiceRepository(db)

    def create_invoice(
        self,
        user_id: str,
        amount: Decimal,
        subscription_id: UUID | None = None,
        currency: str = "USD",
    ) -> Invoice:
        return self.invoice_repo.create(
            user_id=user_id,
            amount=amount,
            subscription_id=subscription_id,
            currency=currency,
        )

    def get_invoice_by_id(self, invoice_id: UUID) -> Invoice | None:
        return self.invoice_repo.get_by_id(invoice_id)

    def mark_invoice_as_paid(self, invoice_id: UUID) -> Invoice | None:
        invoice = self.invoice_repo.mark_paid(invoice_id, utc_now())
        if invoice is None:
            logger.warning("Cannot mark invoice %s as paid: not found", invoice_id)
        return invoice

    def void_invoice(self, invoice_id: UUID) -> Invoice | None:
        invoice = self.invoice_repo.void(invoice_id, utc_now())
        if invoice is None:
            logger.warning("Cannot void invoice %s: not found", invoice_id)
        return invoice

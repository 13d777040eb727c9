"""Payment schemas."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from billing_engine.models.payment import PaymentStatus


class PaymentCreate(BaseModel):
    """Schema for creating a payment."""

    invoice_id: UUID
    subscription_id: UUID | None = None
    user_id: str = Field(..., min_length=1, max_length=255)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    payment_method: str | None = Field(default=None, max_length=50)


class PaymentResponse(BaseModel):
    """Schema for payment response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    invoice_id: UUID
    subscription_id: UUID | None = None
    user_id: str
    amount: Decimal
    currency: str
    status: PaymentStatus
    payment_method: str | None = None
    payment_gateway: str | None = None
    gateway_transaction_id: str | None = None
    failure_code: str | None = None
    failure_message: str | None = None
    retry_count: int
    next_retry_at: datetime | None = None
    processed_at: datetime | None = None
    refunded_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class PaymentRetryLogResponse(BaseModel):
    """Schema for a single recorded payment attempt."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    payment_id: UUID
    retry_attempt: int
    status: PaymentStatus
    failure_code: str | None = None
    failure_reason: str | None = None
    attempted_at: datetime

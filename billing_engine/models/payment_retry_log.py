"""PaymentRetryLog model for recording every payment attempt."""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text

from billing_engine.core.database import Base
from billing_engine.models.shared import UUIDType, generate_uuid, utc_now


class PaymentRetryLog(Base):
    """Records each individual attempt against the gateway. Append-only."""

    __tablename__ = "payment_retry_logs"
    __table_args__ = (
        Index("ix_payment_retry_logs_payment_id", "payment_id"),
    )

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    payment_id = Column(
        UUIDType,
        ForeignKey("payments.id", ondelete="RESTRICT"),
        nullable=False,
    )
    retry_attempt = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False)
    failure_code = Column(String(50), nullable=True)
    failure_reason = Column(Text, nullable=True)
    attempted_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

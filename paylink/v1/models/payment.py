import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, Numeric, Text, JSON, DateTime, Index
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from paylink.db.base_model import BaseModel


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = {PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED}


def generate_payment_link_id() -> str:
    return str(uuid.uuid4())


class Payment(BaseModel):
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    payment_link_id: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, default=generate_payment_link_id
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="TZS")

    phone_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, index=True)
    customer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    return_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)

    status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus, values_callable=lambda statuses: [s.value for s in statuses],
                native_enum=False, length=50),
        default=PaymentStatus.PENDING,
        nullable=False,
        index=True
    )

    payment_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    external_payment_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    payment_method: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # last gateway or webhook response, replaced on every status update
    gateway_response: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_payments_phone_created", "phone_number", "created_at"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_link_id": self.payment_link_id,
            "amount": self.amount,
            "currency": self.currency,
            "phone_number": self.phone_number,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "description": self.description,
            "return_url": self.return_url,
            "status": self.status.value,
            "payment_reference": self.payment_reference,
            "external_payment_id": self.external_payment_id,
            "payment_method": self.payment_method,
            "gateway_response": self.gateway_response,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "paid_at": self.paid_at,
        }

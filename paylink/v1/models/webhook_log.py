from enum import Enum
from typing import Optional

from sqlalchemy import Integer, Text, JSON, ForeignKey
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from paylink.db.base_model import AppendOnlyModel


class WebhookLogStatus(str, Enum):
    PROCESSED = "processed"
    ERROR = "error"
    NO_MATCHING_PAYMENT = "no_matching_payment"


class WebhookLog(AppendOnlyModel):
    """Append-only audit row, one per inbound webhook delivery"""
    __tablename__ = "webhook_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    payment_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("payments.id"),
        nullable=True,
        index=True
    )

    webhook_data: Mapped[dict] = mapped_column(JSON, nullable=False)

    status: Mapped[WebhookLogStatus] = mapped_column(
        SQLEnum(WebhookLogStatus, values_callable=lambda statuses: [s.value for s in statuses],
                native_enum=False, length=50),
        nullable=False,
        index=True
    )

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


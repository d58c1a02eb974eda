from .payment import Payment, PaymentStatus
from .webhook_log import WebhookLog, WebhookLogStatus

__all__ = ["Payment", "PaymentStatus", "WebhookLog", "WebhookLogStatus"]

from .payment_service import PaymentService

__all__ = ["PaymentService"]

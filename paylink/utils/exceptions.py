from typing import Optional


class PaymentServiceError(Exception):
    """Base error carrying a stable machine code and the HTTP status to surface"""

    code = "PAYMENT_SERVICE_ERROR"
    status_code = 500

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_context(self) -> dict:
        return {"code": self.code, "error": self.message}


class DuplicateLink(PaymentServiceError):
    code = "DUPLICATE_LINK"
    status_code = 409


class PaymentNotFound(PaymentServiceError):
    code = "PAYMENT_NOT_FOUND"
    status_code = 404


class GatewayError(PaymentServiceError):
    code = "GATEWAY_ERROR"
    status_code = 502


class StorageUnavailable(PaymentServiceError):
    code = "STORAGE_UNAVAILABLE"
    status_code = 503

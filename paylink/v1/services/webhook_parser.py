"""Field extraction and status mapping for loosely structured gateway payloads.

Each field is described by an ordered list of ``(key, transform)`` rules. The
first rule whose key is present with a truthy value and whose transform
succeeds provides the field; a field no rule satisfies stays ``None``.
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from paylink.utils.logger import logger
from paylink.v1.models.payment import PaymentStatus


ExtractorRule = Tuple[str, Optional[Callable[[Any], Any]]]


def _lower(value: Any) -> str:
    return str(value).strip().lower()


def _as_text(value: Any) -> str:
    return str(value)


TRANSACTION_ID_RULES: List[ExtractorRule] = [
    ("tranid", _as_text),
    ("transaction_id", _as_text),
    ("id", _as_text),
]

STATUS_RULES: List[ExtractorRule] = [
    ("status", _lower),
    ("state", _lower),
]

POLL_STATUS_RULES: List[ExtractorRule] = [("payment_status", _lower)] + STATUS_RULES

AMOUNT_RULES: List[ExtractorRule] = [
    ("amount", float),
]

PHONE_NUMBER_RULES: List[ExtractorRule] = [
    ("number", _as_text),
    ("phone_number", _as_text),
]

# identifiers a gateway or callback blob may carry for the external transaction
EXTERNAL_ID_RULES: List[ExtractorRule] = [
    ("payment_id", _as_text),
    ("external_payment_id", _as_text),
    ("tranid", _as_text),
    ("tranID", _as_text),
    ("transaction_id", _as_text),
]

WEBHOOK_STATUS_MAP: Dict[str, PaymentStatus] = {
    "success": PaymentStatus.COMPLETED,
    "successful": PaymentStatus.COMPLETED,
    "completed": PaymentStatus.COMPLETED,
    "paid": PaymentStatus.COMPLETED,
    "failed": PaymentStatus.FAILED,
    "error": PaymentStatus.FAILED,
    "cancelled": PaymentStatus.FAILED,
    "canceled": PaymentStatus.FAILED,
    "pending": PaymentStatus.PROCESSING,
    "processing": PaymentStatus.PROCESSING,
    "initiated": PaymentStatus.PROCESSING,
}

# the legacy callback keeps its own vocabulary and defaults to processing
CALLBACK_STATUS_MAP: Dict[str, PaymentStatus] = {
    "success": PaymentStatus.COMPLETED,
    "completed": PaymentStatus.COMPLETED,
    "failed": PaymentStatus.FAILED,
    "cancelled": PaymentStatus.CANCELLED,
}


def extract_field(payload: Dict[str, Any], rules: List[ExtractorRule]) -> Any:
    for key, transform in rules:
        raw_value = payload.get(key)
        if raw_value is None or raw_value == "" or raw_value is False:
            continue
        if transform is None:
            return raw_value
        try:
            return transform(raw_value)
        except (TypeError, ValueError):
            logger.debug("Could not convert %s=%r, trying next rule", key, raw_value)
    return None


@dataclass
class WebhookFields:
    transaction_id: Optional[str] = None
    status: Optional[str] = None
    amount: Optional[float] = None
    phone_number: Optional[str] = None


def parse_webhook_payload(payload: Dict[str, Any]) -> WebhookFields:
    """Pull the reconciliation fields out of an arbitrary webhook body"""
    return WebhookFields(
        transaction_id=extract_field(payload, TRANSACTION_ID_RULES),
        status=extract_field(payload, STATUS_RULES),
        amount=extract_field(payload, AMOUNT_RULES),
        phone_number=extract_field(payload, PHONE_NUMBER_RULES),
    )


def map_webhook_status(raw_status: Optional[str]) -> PaymentStatus:
    internal_status = WEBHOOK_STATUS_MAP.get(raw_status or "")
    if internal_status is None:
        logger.warning("Unknown webhook status received: %r, defaulting to pending", raw_status)
        return PaymentStatus.PENDING
    return internal_status


def map_callback_status(raw_status: Optional[str]) -> PaymentStatus:
    return CALLBACK_STATUS_MAP.get(_lower(raw_status) if raw_status else "", PaymentStatus.PROCESSING)


def extract_external_id(response_blob: Optional[Dict[str, Any]]) -> Optional[str]:
    """Find the gateway's transaction id in a response blob or its nested data object"""
    if not isinstance(response_blob, dict):
        return None

    external_id = extract_field(response_blob, EXTERNAL_ID_RULES)
    if external_id is None and isinstance(response_blob.get("data"), dict):
        external_id = extract_field(response_blob["data"], EXTERNAL_ID_RULES)
    return external_id

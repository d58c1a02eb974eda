import os
from contextlib import contextmanager
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from paylink.db.base_model import utc_now
from paylink.utils.exceptions import (
    DuplicateLink,
    GatewayError,
    PaymentNotFound,
    PaymentServiceError,
    StorageUnavailable,
)
from paylink.utils.fastlipa import FastlipaClient
from paylink.utils.logger import logger
from paylink.v1.models.payment import Payment, PaymentStatus, generate_payment_link_id
from paylink.v1.models.webhook_log import WebhookLog, WebhookLogStatus
from paylink.v1.services.webhook_parser import (
    POLL_STATUS_RULES,
    WEBHOOK_STATUS_MAP,
    extract_external_id,
    extract_field,
    map_callback_status,
    map_webhook_status,
    parse_webhook_payload,
)

load_dotenv()

BASE_URL = os.getenv("BASE_URL", "http://localhost:3000")
WEBHOOK_MATCH_WINDOW_MINUTES = int(os.getenv("WEBHOOK_MATCH_WINDOW_MINUTES", "60"))

COUNTRY_CODE_PREFIX = "255"
DEFAULT_CURRENCY = "TZS"


def normalize_phone_number(phone_number: str) -> str:
    """Strip the Tanzanian calling code, the gateway expects local numbers"""
    if phone_number.startswith(COUNTRY_CODE_PREFIX):
        return phone_number[len(COUNTRY_CODE_PREFIX):]
    return phone_number


def to_whole_units(amount: Any) -> int:
    """Round half up to a whole currency unit"""
    return int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentService:
    """Payment link lifecycle: creation, gateway dispatch and webhook reconciliation.

    Built per request around an injected database session and gateway client.
    Payment updates and audit rows are committed separately, so there is no
    atomicity between a status change and its webhook log entry.
    """

    def __init__(self, db: Session, gateway: FastlipaClient,
                 base_url: Optional[str] = None,
                 match_window: Optional[timedelta] = None):
        self.db = db
        self.gateway = gateway
        self.base_url = (base_url or BASE_URL).rstrip("/")
        self.match_window = match_window or timedelta(minutes=WEBHOOK_MATCH_WINDOW_MINUTES)

    @contextmanager
    def _storage(self, action: str):
        try:
            yield
        except PaymentServiceError:
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Storage failure while trying to %s", action)
            raise StorageUnavailable(f"Failed to {action}: {e}") from e

    def build_payment_link(self, payment_link_id: str) -> str:
        return f"{self.base_url}/pay/{payment_link_id}"

    def generate_link(self, amount: Decimal, description: str,
                      customer_name: Optional[str] = None,
                      customer_email: Optional[str] = None,
                      return_url: Optional[str] = None,
                      phone_number: Optional[str] = None,
                      currency: Optional[str] = None) -> Dict[str, Any]:
        """Create a pending payment behind a fresh, unguessable link id"""
        payment_link_id = generate_payment_link_id()
        payment = Payment(
            payment_link_id=payment_link_id,
            amount=amount,
            currency=currency or DEFAULT_CURRENCY,
            phone_number=phone_number,
            customer_name=customer_name,
            customer_email=customer_email,
            description=description,
            return_url=return_url,
            status=PaymentStatus.PENDING
        )

        with self._storage("generate payment link"):
            try:
                payment.insert(self.db)
            except IntegrityError as e:
                self.db.rollback()
                logger.warning("Payment link id collision on insert: %s", payment_link_id)
                raise DuplicateLink(f"Payment link id {payment_link_id} already exists") from e

        logger.info("Payment link generated: %s for amount %s %s",
                    payment_link_id, payment.amount, payment.currency)
        return {
            "payment_link_id": payment_link_id,
            "payment_link": self.build_payment_link(payment_link_id),
            "payment": payment
        }

    def get_by_link_id(self, payment_link_id: str) -> Optional[Payment]:
        with self._storage("fetch payment"):
            return Payment.fetch_one(self.db, payment_link_id=payment_link_id)

    def update_status(self, payment_link_id: str, new_status: PaymentStatus,
                      gateway_response: Optional[Dict[str, Any]] = None) -> Payment:
        """Partial update of a payment's status, keyed by link id"""
        new_status = PaymentStatus(new_status)

        with self._storage("update payment status"):
            payment = Payment.fetch_one(self.db, payment_link_id=payment_link_id)
            if not payment:
                raise PaymentNotFound(f"Payment {payment_link_id} not found")

            payment.status = new_status
            payment.updated_at = utc_now()
            if new_status == PaymentStatus.COMPLETED:
                payment.paid_at = utc_now()

            if gateway_response is not None:
                payment.gateway_response = gateway_response
                external_payment_id = extract_external_id(gateway_response)
                if external_payment_id:
                    payment.external_payment_id = external_payment_id

            payment.update(self.db)

        logger.info("Payment %s status updated to %s", payment_link_id, new_status.value)
        return payment

    async def process_payment(self, payment_link_id: str, amount: Any, currency: Optional[str],
                              phone_number: str, description: Optional[str],
                              customer_name: Optional[str]) -> Dict[str, Any]:
        """Dispatch a payment request to the gateway and move the payment to processing.

        Calling this twice for the same link creates two gateway transactions.
        """
        with self._storage("record payer details"):
            payment = Payment.fetch_one(self.db, payment_link_id=payment_link_id)
            if not payment:
                raise PaymentNotFound(f"Payment {payment_link_id} not found")
            payment.phone_number = phone_number
            if customer_name:
                payment.customer_name = customer_name
            payment.update(self.db)

        local_phone_number = normalize_phone_number(phone_number)
        whole_amount = to_whole_units(amount)
        logger.info("Processing payment %s: %s %s from %s (%s)",
                    payment_link_id, whole_amount, currency or DEFAULT_CURRENCY,
                    local_phone_number, description)

        try:
            gateway_response = await self.gateway.create_transaction(
                number=local_phone_number,
                amount=whole_amount,
                name=customer_name
            )
        except Exception as e:
            logger.exception("Gateway dispatch failed for payment %s", payment_link_id)
            self.update_status(payment_link_id, PaymentStatus.FAILED, {"error": str(e)})
            if isinstance(e, GatewayError):
                raise
            raise GatewayError(f"Payment processing failed: {e}") from e

        self.update_status(payment_link_id, PaymentStatus.PROCESSING, gateway_response)

        return {
            "gateway_transaction_id": extract_external_id(gateway_response),
            "status": gateway_response.get("status") or "pending",
            "instructions": "Payment initiated successfully. Use the transaction ID to check status."
        }

    def log_webhook(self, webhook_data: Any, status: WebhookLogStatus,
                    payment_id: Optional[int] = None,
                    error_message: Optional[str] = None) -> Optional[WebhookLog]:
        """Write an audit row. Never raises: a failed audit write is only logged."""
        webhook_log = WebhookLog(
            payment_id=payment_id,
            webhook_data=webhook_data,
            status=status,
            error_message=error_message
        )
        try:
            return webhook_log.insert(self.db)
        except Exception:
            self.db.rollback()
            logger.exception("Failed to write webhook log with status %s", status.value)
            return None

    def find_payment_for_webhook(self, transaction_id: Optional[str],
                                 phone_number: Optional[str]) -> Optional[Payment]:
        payment = None
        if transaction_id:
            payment = Payment.fetch_one(self.db, external_payment_id=transaction_id)

        if not payment and phone_number:
            window_start = utc_now() - self.match_window
            payment = self.db.scalars(
                select(Payment)
                .where(Payment.phone_number == phone_number, Payment.created_at > window_start)
                .order_by(Payment.created_at.desc(), Payment.id.desc())
                .limit(1)
            ).first()
        return payment

    def reconcile_webhook(self, webhook_data: Dict[str, Any]) -> Dict[str, Any]:
        """Merge a gateway notification into payment state.

        Every call leaves exactly one webhook_logs row behind. An unmatched
        notification is a normal result, not an exception.
        """
        payment_id = None
        try:
            fields = parse_webhook_payload(webhook_data)
            logger.info("Webhook fields extracted: transaction_id=%s status=%s amount=%s phone_number=%s",
                        fields.transaction_id, fields.status, fields.amount, fields.phone_number)
            internal_status = map_webhook_status(fields.status)

            payment = self.find_payment_for_webhook(fields.transaction_id, fields.phone_number)

            if not payment:
                logger.warning("No matching payment for webhook: transaction_id=%s phone_number=%s",
                               fields.transaction_id, fields.phone_number)
                self.log_webhook(webhook_data, WebhookLogStatus.NO_MATCHING_PAYMENT)
                return {
                    "success": False,
                    "message": "No matching payment found",
                    "received_data": {
                        "transaction_id": fields.transaction_id,
                        "phone_number": fields.phone_number,
                        "status": fields.status
                    }
                }

            payment_id = payment.id
            previous_status = payment.status
            logger.info("Webhook matched payment %s, current status: %s", payment_id, previous_status.value)

            if previous_status != internal_status:
                self.update_status(
                    payment.payment_link_id,
                    internal_status,
                    {
                        "webhook_data": webhook_data,
                        "external_payment_id": fields.transaction_id,
                        "gateway_status": fields.status,
                        "processed_at": utc_now().isoformat()
                    }
                )
                logger.info("Payment %s status: %s -> %s",
                            payment_id, previous_status.value, internal_status.value)
            else:
                logger.info("Payment %s already has status %s", payment_id, internal_status.value)

            self.log_webhook(webhook_data, WebhookLogStatus.PROCESSED, payment_id=payment_id)

            return {
                "success": True,
                "message": "Webhook processed successfully",
                "payment_id": payment_id,
                "previous_status": previous_status.value,
                "new_status": internal_status.value,
                "transaction_id": fields.transaction_id
            }

        except Exception as e:
            logger.exception("Error reconciling webhook")
            self.db.rollback()
            error_message = e.message if isinstance(e, PaymentServiceError) else str(e)
            self.log_webhook(webhook_data, WebhookLogStatus.ERROR,
                             payment_id=payment_id, error_message=error_message)
            if isinstance(e, SQLAlchemyError):
                raise StorageUnavailable(f"Failed to reconcile webhook: {e}") from e
            raise

    def handle_callback(self, callback_data: Dict[str, Any]) -> Dict[str, Any]:
        """Legacy callback: the payment reference is the link id"""
        payment_reference = callback_data.get("paymentReference")
        new_status = map_callback_status(callback_data.get("status"))
        logger.info("Legacy callback for %s mapped to %s", payment_reference, new_status.value)

        self.update_status(payment_reference, new_status, {
            "callback_data": callback_data,
            "external_payment_id": callback_data.get("paymentId")
        })
        return {"success": True}

    async def check_gateway_status(self, transaction_id: str) -> Dict[str, Any]:
        return await self.gateway.status_transaction(transaction_id)

    async def sync_payment_status(self, payment_link_id: str) -> Dict[str, Any]:
        """Poll the gateway for a payment and reconcile its answer like a webhook"""
        payment = self.get_by_link_id(payment_link_id)
        if not payment:
            raise PaymentNotFound(f"Payment {payment_link_id} not found")
        if not payment.external_payment_id:
            raise GatewayError(
                f"Payment {payment_link_id} has no gateway transaction yet",
                code="NO_EXTERNAL_ID"
            )

        status_response = await self.check_gateway_status(payment.external_payment_id)
        status_payload = status_response.get("data")
        if not isinstance(status_payload, dict):
            status_payload = status_response
        status_payload = {"tranid": payment.external_payment_id, **status_payload}

        # status-transaction reports the payment outcome as payment_status
        gateway_status = extract_field(status_payload, POLL_STATUS_RULES)
        if gateway_status not in WEBHOOK_STATUS_MAP:
            logger.warning("Gateway returned no usable status for payment %s: %r, leaving it %s",
                           payment_link_id, gateway_status, payment.status.value)
            return {
                "success": False,
                "message": "Gateway reported no recognised payment status",
                "payment_id": payment.id,
                "previous_status": payment.status.value,
                "new_status": payment.status.value,
                "transaction_id": payment.external_payment_id
            }
        status_payload["status"] = gateway_status
        return self.reconcile_webhook(status_payload)

    def stats(self) -> Dict[str, Any]:
        is_completed = Payment.status == PaymentStatus.COMPLETED
        with self._storage("fetch payment statistics"):
            row = self.db.execute(
                select(
                    func.count(Payment.id).label("total_payments"),
                    func.coalesce(
                        func.sum(case((is_completed, Payment.amount), else_=0)), 0
                    ).label("total_amount"),
                    func.count(case((is_completed, 1))).label("completed_payments"),
                    func.count(case((Payment.status == PaymentStatus.PENDING, 1))).label("pending_payments"),
                    func.count(case((Payment.status == PaymentStatus.FAILED, 1))).label("failed_payments"),
                )
            ).one()
        return dict(row._mapping)

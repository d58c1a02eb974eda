import json
import uuid
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, EmailStr, Field

from paylink.utils.deps import get_payment_service
from paylink.utils.exceptions import PaymentServiceError
from paylink.utils.logger import logger
from paylink.utils.responses import success_response, fail_response, error_response
from paylink.v1.models.payment import TERMINAL_STATUSES
from paylink.v1.services.payment_service import PaymentService

router = APIRouter(prefix="/payments", tags=["Payments"])


class GenerateLinkRequest(BaseModel):
    amount: Decimal = Field(gt=0, le=Decimal("999999.99"), decimal_places=2)
    description: str = Field(min_length=3, max_length=255)
    customer_name: Optional[str] = Field(default=None, min_length=2, max_length=255)
    customer_email: Optional[EmailStr] = None
    phone_number: Optional[str] = Field(default=None, max_length=20)
    return_url: Optional[str] = Field(default=None, max_length=2048)


class ProcessPaymentRequest(BaseModel):
    payment_link_id: uuid.UUID
    phone_number: str = Field(pattern=r"^(0|255)[0-9]{9}$")  # 0XXXXXXXXX or 255XXXXXXXXX
    customer_name: str = Field(min_length=2, max_length=255)


class CallbackRequest(BaseModel):
    paymentReference: str
    status: Optional[str] = None
    paymentId: Optional[str] = None


def internal_error(message: str):
    return fail_response(
        status_code=500,
        message=message,
        context={"code": "INTERNAL_ERROR"}
    )


@router.post("/generate-link")
async def generate_payment_link(
    request: GenerateLinkRequest,
    service: PaymentService = Depends(get_payment_service)
):
    """Create a shareable payment link"""
    logger.info("Payment link requested for amount: %s, description: %s", request.amount, request.description)
    try:
        link_result = service.generate_link(
            amount=request.amount,
            description=request.description,
            customer_name=request.customer_name,
            customer_email=request.customer_email,
            return_url=request.return_url,
            phone_number=request.phone_number
        )
        return success_response(
            status_code=201,
            message="Payment link generated",
            data={
                "payment_link_id": link_result["payment_link_id"],
                "payment_link": link_result["payment_link"],
                "payment": link_result["payment"].to_dict()
            }
        )
    except PaymentServiceError as e:
        return error_response(e)
    except Exception:
        logger.exception("Unhandled exception in generate_payment_link")
        return internal_error("Failed to generate payment link")


@router.get("/stats")
async def get_payment_stats(service: PaymentService = Depends(get_payment_service)):
    """Totals over all payments; the amount only counts completed ones"""
    try:
        return success_response(
            status_code=200,
            message="Payment statistics retrieved",
            data=service.stats()
        )
    except PaymentServiceError as e:
        return error_response(e)
    except Exception:
        logger.exception("Unhandled exception in get_payment_stats")
        return internal_error("Failed to fetch payment statistics")


@router.post("/process")
async def process_payment(
    request: ProcessPaymentRequest,
    service: PaymentService = Depends(get_payment_service)
):
    """Send the payment request to the mobile-money gateway"""
    payment_link_id = str(request.payment_link_id)
    logger.info("Process request for payment %s from %s", payment_link_id, request.phone_number)
    try:
        payment = service.get_by_link_id(payment_link_id)
        if not payment:
            logger.warning("Process failed: payment %s not found", payment_link_id)
            return fail_response(
                status_code=404,
                message="Payment not found",
                context={"code": "PAYMENT_NOT_FOUND", "payment_link_id": payment_link_id}
            )

        if payment.status in TERMINAL_STATUSES:
            logger.warning("Process refused: payment %s is already %s", payment_link_id, payment.status.value)
            return fail_response(
                status_code=409,
                message=f"Payment is already {payment.status.value}",
                context={"code": "PAYMENT_NOT_PENDING", "status": payment.status.value}
            )

        process_result = await service.process_payment(
            payment_link_id=payment_link_id,
            amount=payment.amount,
            currency=payment.currency,
            phone_number=request.phone_number,
            description=payment.description,
            customer_name=request.customer_name
        )
        return success_response(
            status_code=200,
            message="Payment initiated",
            data=process_result
        )
    except PaymentServiceError as e:
        return error_response(e)
    except Exception:
        logger.exception("Unhandled exception in process_payment for %s", payment_link_id)
        return internal_error("Failed to process payment")


@router.post("/webhook")
async def fastlipa_webhook(
    request: Request,
    service: PaymentService = Depends(get_payment_service)
):
    """Receive Fastlipa notifications; unknown shapes are logged, not rejected"""
    logger.info("Fastlipa webhook received.")
    webhook_body = await request.body()
    if not webhook_body.strip():
        logger.error("Webhook failed: empty body.")
        return fail_response(
            status_code=400,
            message="Webhook payload is required",
            context={"code": "EMPTY_PAYLOAD"}
        )

    try:
        webhook_payload = json.loads(webhook_body)
    except ValueError as e:
        logger.error("Webhook failed: invalid JSON payload. Error: %s", e)
        return fail_response(
            status_code=400,
            message="Invalid JSON payload",
            context={"code": "INVALID_PAYLOAD", "error": str(e)}
        )

    if not isinstance(webhook_payload, dict) or not webhook_payload:
        logger.error("Webhook failed: payload is not a non-empty JSON object.")
        return fail_response(
            status_code=400,
            message="Webhook payload must be a non-empty JSON object",
            context={"code": "INVALID_PAYLOAD"}
        )

    logger.debug("Webhook headers: %s", dict(request.headers))
    try:
        reconcile_result = service.reconcile_webhook(webhook_payload)
    except PaymentServiceError as e:
        logger.error("Webhook processing failed: %s", e.message)
        return fail_response(
            status_code=500,
            message="Webhook processing failed",
            context=e.to_context()
        )
    except Exception:
        logger.exception("Unhandled exception in fastlipa_webhook")
        return internal_error("Webhook processing failed")

    return success_response(
        status_code=200,
        message=reconcile_result["message"],
        data=reconcile_result
    )


@router.post("/callback")
async def payment_callback(
    request: CallbackRequest,
    service: PaymentService = Depends(get_payment_service)
):
    """Legacy Fastlipa callback keyed by payment reference"""
    logger.info("Legacy callback received for %s with status %s", request.paymentReference, request.status)
    try:
        callback_result = service.handle_callback(request.model_dump())
        return success_response(
            status_code=200,
            message="Callback processed",
            data=callback_result
        )
    except PaymentServiceError as e:
        return error_response(e)
    except Exception:
        logger.exception("Unhandled exception in payment_callback")
        return internal_error("Failed to process callback")


@router.get("/status/{payment_link_id}")
async def sync_payment_status(
    payment_link_id: str,
    service: PaymentService = Depends(get_payment_service)
):
    """Ask the gateway for the latest status and reconcile it"""
    logger.info("Status sync requested for payment %s", payment_link_id)
    try:
        sync_result = await service.sync_payment_status(payment_link_id)
        payment = service.get_by_link_id(payment_link_id)
        return success_response(
            status_code=200,
            message=sync_result["message"],
            data={**sync_result, "payment": payment.to_dict() if payment else None}
        )
    except PaymentServiceError as e:
        return error_response(e)
    except Exception:
        logger.exception("Unhandled exception in sync_payment_status for %s", payment_link_id)
        return internal_error("Failed to check payment status")


@router.get("/{payment_link_id}")
async def get_payment(
    payment_link_id: str,
    service: PaymentService = Depends(get_payment_service)
):
    """Payment details for the payment page"""
    try:
        payment = service.get_by_link_id(payment_link_id)
        if not payment:
            return fail_response(
                status_code=404,
                message="Payment not found",
                context={"code": "PAYMENT_NOT_FOUND", "payment_link_id": payment_link_id}
            )
        return success_response(
            status_code=200,
            message="Payment retrieved",
            data=payment.to_dict()
        )
    except PaymentServiceError as e:
        return error_response(e)
    except Exception:
        logger.exception("Unhandled exception in get_payment for %s", payment_link_id)
        return internal_error("Failed to fetch payment")

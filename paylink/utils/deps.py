from fastapi import Depends
from sqlalchemy.orm import Session

from paylink.db.database import get_db
from paylink.utils.fastlipa import FastlipaClient
from paylink.v1.services.payment_service import PaymentService


def get_gateway_client() -> FastlipaClient:
    """Gateway client configured from FASTLIPA_* environment variables"""
    return FastlipaClient()


def get_payment_service(
    db: Session = Depends(get_db),
    gateway: FastlipaClient = Depends(get_gateway_client)
) -> PaymentService:
    """Payment service bound to this request's session"""
    return PaymentService(db=db, gateway=gateway)

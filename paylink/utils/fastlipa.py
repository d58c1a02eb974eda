import os
from typing import Optional

import httpx
from dotenv import load_dotenv

from .exceptions import GatewayError
from .logger import logger

load_dotenv()

FASTLIPA_API_KEY = os.getenv("FASTLIPA_API_KEY")
FASTLIPA_BASE_URL = os.getenv("FASTLIPA_BASE_URL", "https://api.fastlipa.com")
FASTLIPA_TIMEOUT_SECONDS = float(os.getenv("FASTLIPA_TIMEOUT_SECONDS", "10"))

FAILED_GATEWAY_STATUSES = {"failed", "error"}


class FastlipaClient:
    """Outbound client for the Fastlipa mobile-money API.

    Every failure (network, timeout, non-2xx, body that is not a JSON object,
    explicit failure payload) is raised as GatewayError.
    """

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None,
                 timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key if api_key is not None else FASTLIPA_API_KEY
        self.base_url = (base_url or FASTLIPA_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else FASTLIPA_TIMEOUT_SECONDS
        self.transport = transport

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    @staticmethod
    def _parse(response: httpx.Response) -> dict:
        try:
            response_body = response.json()
        except ValueError as e:
            raise GatewayError(f"Malformed gateway response: {e}") from e

        if not isinstance(response_body, dict):
            raise GatewayError("Malformed gateway response: expected a JSON object")

        gateway_status = str(response_body.get("status", "")).lower()
        if response_body.get("success") is False or gateway_status in FAILED_GATEWAY_STATUSES:
            raise GatewayError(
                f"Gateway rejected the request: {response_body.get('message') or gateway_status}"
            )
        return response_body

    async def create_transaction(self, number: str, amount: int, name: Optional[str]) -> dict:
        """Ask the gateway to push a payment prompt to the given phone number"""
        transaction_url = f"{self.base_url}/api/create-transaction"
        request_payload = {
            "number": number,
            "amount": amount,
            "name": name
        }

        try:
            async with self._client() as http_client:
                logger.info("Creating Fastlipa transaction for number: %s, amount: %s", number, amount)
                response = await http_client.post(transaction_url, json=request_payload, headers=self._headers())
                response.raise_for_status()
        except httpx.TimeoutException as e:
            logger.exception("Fastlipa create-transaction timed out after %ss", self.timeout)
            raise GatewayError(f"Gateway request timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            logger.exception("Failed to create Fastlipa transaction for number: %s", number)
            raise GatewayError(f"Gateway request failed: {e}") from e

        response_body = self._parse(response)
        logger.info("Fastlipa transaction created: %s", response_body)
        return response_body

    async def status_transaction(self, transaction_id: str) -> dict:
        """Fetch the gateway's current view of a transaction"""
        status_url = f"{self.base_url}/api/status-transaction"

        try:
            async with self._client() as http_client:
                logger.info("Checking Fastlipa transaction status: %s", transaction_id)
                response = await http_client.get(
                    status_url, params={"tranid": transaction_id}, headers=self._headers()
                )
                response.raise_for_status()
        except httpx.TimeoutException as e:
            logger.exception("Fastlipa status-transaction timed out for: %s", transaction_id)
            raise GatewayError(f"Gateway request timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            logger.exception("Failed to check Fastlipa transaction status: %s", transaction_id)
            raise GatewayError(f"Failed to check payment status: {e}") from e

        try:
            response_body = response.json()
        except ValueError as e:
            raise GatewayError(f"Malformed gateway response: {e}") from e
        if not isinstance(response_body, dict):
            raise GatewayError("Malformed gateway response: expected a JSON object")
        logger.info("Fastlipa status for %s: %s", transaction_id, response_body)
        return response_body

import json

import httpx
import pytest

from paylink.utils.exceptions import GatewayError
from paylink.utils.fastlipa import FastlipaClient


def make_client(handler, **kwargs):
    return FastlipaClient(
        api_key="secret-key",
        base_url="https://fastlipa.test/",
        transport=httpx.MockTransport(handler),
        **kwargs
    )


@pytest.mark.anyio
async def test_create_transaction_posts_payload_with_bearer_token():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["authorization"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"status": "success", "data": {"tranid": "FL-1"}})

    response_body = await make_client(handler).create_transaction("712345678", 1000, "Asha")

    assert response_body == {"status": "success", "data": {"tranid": "FL-1"}}
    assert seen == {
        "method": "POST",
        "url": "https://fastlipa.test/api/create-transaction",
        "authorization": "Bearer secret-key",
        "body": {"number": "712345678", "amount": 1000, "name": "Asha"},
    }


@pytest.mark.anyio
async def test_status_transaction_sends_tranid_query():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["tranid"] = request.url.params["tranid"]
        return httpx.Response(200, json={"status": "success", "data": {"status": "failed"}})

    response_body = await make_client(handler).status_transaction("FL-1")

    assert seen == {"path": "/api/status-transaction", "tranid": "FL-1"}
    assert response_body["data"]["status"] == "failed"


@pytest.mark.anyio
async def test_non_2xx_raises_gateway_error():
    def handler(request):
        return httpx.Response(401, json={"message": "Unauthorized"})

    with pytest.raises(GatewayError):
        await make_client(handler).create_transaction("712345678", 1000, "Asha")


@pytest.mark.anyio
async def test_malformed_body_raises_gateway_error():
    def handler(request):
        return httpx.Response(200, text="<html>maintenance</html>")

    with pytest.raises(GatewayError, match="Malformed"):
        await make_client(handler).create_transaction("712345678", 1000, "Asha")


@pytest.mark.anyio
async def test_explicit_failure_payload_raises_gateway_error():
    def handler(request):
        return httpx.Response(200, json={"status": "error", "message": "Invalid number"})

    with pytest.raises(GatewayError, match="Invalid number"):
        await make_client(handler).create_transaction("123", 1000, "Asha")


@pytest.mark.anyio
async def test_timeout_raises_gateway_error():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(GatewayError, match="timed out"):
        await make_client(handler, timeout=2).create_transaction("712345678", 1000, "Asha")

"""
Tests for CryptomusGateway - request signing and webhook verification.
"""

import base64
import hashlib
import json
from typing import Any

import aiohttp
import pytest

from cryptotrade.exceptions import PaymentGatewayError
from cryptotrade.services import payment_gateway
from cryptotrade.services.payment_gateway import CryptomusGateway, make_sign


class FakeResponse:
    def __init__(self, status: int, payload: Any):
        self.status = status
        self.payload = payload
        self.reason = "OK" if status == 200 else "Error"

    async def json(self, content_type=None):
        return self.payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Stands in for aiohttp.ClientSession (class and instance)."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def __call__(self, *args, **kwargs):
        return self

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def post(self, url, data=None, headers=None):
        if self.error:
            raise self.error
        self.calls.append((url, data, headers))
        return self.response


@pytest.fixture
def gateway():
    return CryptomusGateway(
        merchant_id="merchant-1",
        payment_api_key="payment-key",
        payout_api_key="payout-key",
        base_url="http://gateway.test/v1"
    )


def use_session(monkeypatch, session: FakeSession) -> FakeSession:
    monkeypatch.setattr(payment_gateway.aiohttp, "ClientSession", session)
    return session


class TestSigning:

    def test_sign_is_md5_of_base64_body_and_key(self):
        body = '{"amount":"10"}'
        expected = hashlib.md5((base64.b64encode(body.encode()).decode() + "key").encode()).hexdigest()
        assert make_sign(body, "key") == expected
        assert make_sign(body.encode(), "key") == expected

    def test_verify_webhook(self, gateway):
        body = b'{"uuid":"inv-1","status":"paid"}'
        assert gateway.verify_webhook(body, make_sign(body, "payment-key")) is True
        assert gateway.verify_webhook(body, make_sign(body, "payout-key")) is False
        assert gateway.verify_webhook(body, "") is False

    def test_verify_without_key_fails_closed(self):
        gateway = CryptomusGateway(merchant_id="m", payment_api_key="", payout_api_key="")
        body = b"{}"
        assert gateway.verify_webhook(body, make_sign(body, "")) is False


class TestRequests:

    @pytest.mark.asyncio
    async def test_invoice_request_is_signed(self, gateway, monkeypatch):
        session = use_session(monkeypatch, FakeSession(FakeResponse(200, {
            "state": 0,
            "result": {"uuid": "inv-1", "url": "http://pay.test/inv-1", "address": "addr"},
        })))

        invoice = await gateway.create_invoice(10.5, "USDT", "order-1", "http://app.test/hook")

        assert (invoice.uuid, invoice.url, invoice.address) == ("inv-1", "http://pay.test/inv-1", "addr")
        url, body, headers = session.calls[0]
        assert url == "http://gateway.test/v1/payment"
        assert headers["merchant"] == "merchant-1"
        assert headers["sign"] == make_sign(body, "payment-key")
        payload = json.loads(body)
        assert payload["amount"] == "10.5"
        assert payload["url_callback"] == "http://app.test/hook"
        assert "url_return" not in payload
        assert " " not in body

    @pytest.mark.asyncio
    async def test_payout_uses_payout_key(self, gateway, monkeypatch):
        session = use_session(monkeypatch, FakeSession(FakeResponse(200, {
            "state": 0,
            "result": {"uuid": "pay-1", "status": "process"},
        })))

        payout = await gateway.create_payout(100, "USDT", "order-2", "TAddr", "tron")

        assert (payout.uuid, payout.status) == ("pay-1", "process")
        url, body, headers = session.calls[0]
        assert url == "http://gateway.test/v1/payout"
        assert headers["sign"] == make_sign(body, "payout-key")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status, payload", [(502, None), (200, None), (200, ["error"]), (200, "ok")])
    async def test_non_object_body_is_a_gateway_error(self, gateway, monkeypatch, status, payload):
        use_session(monkeypatch, FakeSession(FakeResponse(status, payload)))

        with pytest.raises(PaymentGatewayError, match="unexpected body"):
            await gateway.create_payout(100, "USDT", "order-2", "TAddr", "tron")

    @pytest.mark.asyncio
    async def test_rejected_request(self, gateway, monkeypatch):
        use_session(monkeypatch, FakeSession(FakeResponse(422, {"state": 1, "message": "Wrong amount"})))

        with pytest.raises(PaymentGatewayError, match="Wrong amount"):
            await gateway.create_invoice(10, "USDT", "order-1", "http://app.test/hook")

    @pytest.mark.asyncio
    async def test_transport_error(self, gateway, monkeypatch):
        use_session(monkeypatch, FakeSession(error=aiohttp.ClientConnectionError("refused")))

        with pytest.raises(PaymentGatewayError) as exc_info:
            await gateway.create_payout(100, "USDT", "order-2", "TAddr", "tron")
        assert exc_info.value.retryable is True

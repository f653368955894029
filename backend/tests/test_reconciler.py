"""
Tests for PaymentReconciler - deposit/withdrawal lifecycle and webhooks.

Tests cover:
- Deposit invoice creation and failure marking
- Withdrawal reservation and compensation on payout failure
- Signed webhook handling (success, failure, idempotent replay)
"""

import asyncio
import json

import pytest
from unittest.mock import AsyncMock

from cryptotrade.exceptions import (
    InsufficientFunds,
    InvalidAmount,
    PaymentGatewayError,
    SignatureInvalid,
    TransactionNotFound,
    WalletNotFound,
)
from cryptotrade.models.transaction import TransactionStatus, TransactionType
from cryptotrade.services import payment_gateway
from cryptotrade.services.payment_gateway import CryptomusGateway, Invoice, Payout, make_sign
from cryptotrade.services.platform_settings_service import PlatformSettingsService
from cryptotrade.services.reconciler import PaymentReconciler

PAYMENT_KEY = "payment-key"


@pytest.fixture
def gateway():
    gateway = CryptomusGateway(
        merchant_id="merchant-1",
        payment_api_key=PAYMENT_KEY,
        payout_api_key="payout-key",
        base_url="http://gateway.test/v1"
    )
    gateway.create_invoice = AsyncMock(return_value=Invoice(uuid="inv-1", url="http://pay.test/inv-1", address="addr"))
    gateway.create_payout = AsyncMock(return_value=Payout(uuid="pay-1", status="process"))
    return gateway


class NullBodySession:
    """aiohttp.ClientSession stand-in whose every response body is JSON null."""
    status = 502
    reason = "Bad Gateway"

    def __call__(self, *args, **kwargs):
        return self

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def post(self, url, data=None, headers=None):
        return self

    async def json(self, content_type=None):
        return None


def signed(payload: dict):
    body = json.dumps(payload)
    return body, make_sign(body, PAYMENT_KEY)


@pytest.fixture
def reconciler_for(session_factory, gateway):
    """Run a reconciler call in its own session, like one request."""
    async def _run(method: str, *args, **kwargs):
        async with session_factory() as session:
            reconciler = PaymentReconciler(session, gateway, app_url="http://app.test")
            result = await getattr(reconciler, method)(*args, **kwargs)
            await session.commit()
            return result
    return _run


class TestDeposit:

    @pytest.mark.asyncio
    async def test_deposit_creates_pending_transaction_with_invoice_id(self, reconciler_for, gateway):
        result = await reconciler_for("initiate_deposit", "u1", 100, "usdt")

        tx = result["transaction"]
        assert tx.status == TransactionStatus.PENDING.value
        assert tx.type == TransactionType.DEPOSIT.value
        assert tx.currency == "USDT"
        assert tx.fee == pytest.approx(1.0)
        assert tx.external_id == "inv-1"
        assert result["payment"].url == "http://pay.test/inv-1"

        kwargs = gateway.create_invoice.await_args.kwargs
        assert kwargs["order_id"] == tx.order_id
        assert kwargs["callback_url"] == "http://app.test/api/webhook/cryptomus"

    @pytest.mark.asyncio
    async def test_missing_invoice_uuid_falls_back_to_order_id(self, reconciler_for, gateway):
        gateway.create_invoice.return_value = Invoice(uuid=None, url=None, address=None)

        result = await reconciler_for("initiate_deposit", "u1", 100, "USDT")

        assert result["transaction"].external_id == result["transaction"].order_id

    @pytest.mark.asyncio
    async def test_invoice_failure_marks_transaction_failed(self, session_factory, gateway):
        gateway.create_invoice.side_effect = PaymentGatewayError("Cryptomus /payment failed")

        async with session_factory() as session:
            reconciler = PaymentReconciler(session, gateway, app_url="http://app.test")
            with pytest.raises(PaymentGatewayError):
                await reconciler.initiate_deposit("u1", 100, "USDT")

        async with session_factory() as session:
            deposits = await PaymentReconciler(session, gateway).list_transactions("u1", "DEPOSIT")
        assert [t.status for t in deposits] == [TransactionStatus.FAILED.value]

    @pytest.mark.asyncio
    async def test_non_positive_amount_rejected(self, reconciler_for, gateway):
        with pytest.raises(InvalidAmount):
            await reconciler_for("initiate_deposit", "u1", 0, "USDT")
        gateway.create_invoice.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_paid_webhook_credits_net_amount(self, reconciler_for, balance_of):
        result = await reconciler_for("initiate_deposit", "u1", 100, "USDT")
        body, sign = signed({"uuid": "inv-1", "order_id": result["transaction"].order_id,
                             "status": "paid", "amount": "100", "currency": "USDT", "txid": "0xabc"})

        response = await reconciler_for("handle_callback", body, sign)

        assert response == {"success": True}
        assert await balance_of("u1", "USDT") == (pytest.approx(99.0), 0.0)

    @pytest.mark.asyncio
    async def test_replayed_webhook_is_a_noop(self, reconciler_for, balance_of):
        result = await reconciler_for("initiate_deposit", "u1", 100, "USDT")
        body, sign = signed({"uuid": "inv-1", "order_id": result["transaction"].order_id,
                             "status": "paid", "amount": "100"})

        await reconciler_for("handle_callback", body, sign)
        replay = await reconciler_for("handle_callback", body, sign)

        assert replay == {"success": True, "message": "Already processed"}
        assert await balance_of("u1", "USDT") == (pytest.approx(99.0), 0.0)

    @pytest.mark.asyncio
    async def test_failed_deposit_webhook_changes_no_balance(self, reconciler_for, balance_of):
        await reconciler_for("initiate_deposit", "u1", 100, "USDT")
        body, sign = signed({"uuid": "inv-1", "status": "cancel"})

        await reconciler_for("handle_callback", body, sign)
        later_paid_body, later_sign = signed({"uuid": "inv-1", "status": "paid", "amount": "100"})
        late = await reconciler_for("handle_callback", later_paid_body, later_sign)

        assert late["message"] == "Already failed"
        assert await balance_of("u1", "USDT") is None

    @pytest.mark.asyncio
    async def test_lookup_falls_back_to_order_id(self, reconciler_for, gateway, balance_of):
        gateway.create_invoice.return_value = Invoice(uuid="inv-x", url=None, address=None)
        result = await reconciler_for("initiate_deposit", "u1", 50, "USDT")
        body, sign = signed({"uuid": "unknown", "order_id": result["transaction"].order_id,
                             "status": "paid_over", "amount": "50"})

        await reconciler_for("handle_callback", body, sign)

        assert await balance_of("u1", "USDT") == (pytest.approx(49.5), 0.0)

    @pytest.mark.asyncio
    async def test_intermediate_status_is_acknowledged(self, reconciler_for, balance_of):
        await reconciler_for("initiate_deposit", "u1", 100, "USDT")
        body, sign = signed({"uuid": "inv-1", "status": "confirm_check"})

        assert await reconciler_for("handle_callback", body, sign) == {"success": True}
        assert await balance_of("u1", "USDT") is None


class TestWebhookRejection:

    @pytest.mark.asyncio
    async def test_bad_signature_rejected(self, reconciler_for):
        body, _ = signed({"uuid": "inv-1", "status": "paid"})
        with pytest.raises(SignatureInvalid):
            await reconciler_for("handle_callback", body, "0" * 32)

    @pytest.mark.asyncio
    async def test_tampered_body_rejected(self, reconciler_for):
        _, sign = signed({"uuid": "inv-1", "status": "paid", "amount": "1"})
        tampered = json.dumps({"uuid": "inv-1", "status": "paid", "amount": "1000"})
        with pytest.raises(SignatureInvalid):
            await reconciler_for("handle_callback", tampered, sign)

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, reconciler_for):
        body, sign = signed({"uuid": "nope", "order_id": "nope", "status": "paid"})
        with pytest.raises(TransactionNotFound):
            await reconciler_for("handle_callback", body, sign)


class TestWithdrawal:

    @pytest.mark.asyncio
    async def test_withdrawal_reserves_amount_plus_fee(self, reconciler_for, fund, balance_of, gateway):
        await fund("u1", "USDT", 200)

        result = await reconciler_for("initiate_withdrawal", "u1", 100, "USDT", "TAddr", "tron")

        tx = result["transaction"]
        assert tx.status == TransactionStatus.PENDING.value
        assert tx.fee == pytest.approx(0.5)
        assert tx.external_id == "pay-1"
        assert await balance_of("u1", "USDT") == (pytest.approx(99.5), pytest.approx(100.5))
        assert gateway.create_payout.await_args.kwargs["address"] == "TAddr"

    @pytest.mark.asyncio
    async def test_payout_failure_compensates(self, reconciler_for, fund, balance_of, gateway, session_factory):
        await fund("u1", "USDT", 200)
        gateway.create_payout.side_effect = PaymentGatewayError("Cryptomus /payout failed")

        with pytest.raises(PaymentGatewayError):
            await reconciler_for("initiate_withdrawal", "u1", 100, "USDT", "TAddr", "tron")

        assert await balance_of("u1", "USDT") == (pytest.approx(200), pytest.approx(0))
        async with session_factory() as session:
            withdrawals = await PaymentReconciler(session, gateway).list_transactions("u1", "WITHDRAWAL")
        assert [t.status for t in withdrawals] == [TransactionStatus.FAILED.value]

    @pytest.mark.asyncio
    async def test_null_payout_body_compensates(self, reconciler_for, fund, balance_of, gateway, session_factory, monkeypatch):
        await fund("u1", "USDT", 200)
        del gateway.create_payout
        monkeypatch.setattr(payment_gateway.aiohttp, "ClientSession", NullBodySession())

        with pytest.raises(PaymentGatewayError, match="unexpected body"):
            await reconciler_for("initiate_withdrawal", "u1", 100, "USDT", "TAddr", "tron")

        assert await balance_of("u1", "USDT") == (pytest.approx(200), pytest.approx(0))
        async with session_factory() as session:
            withdrawals = await PaymentReconciler(session, gateway).list_transactions("u1", "WITHDRAWAL")
        assert [t.status for t in withdrawals] == [TransactionStatus.FAILED.value]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [AttributeError("'NoneType' object has no attribute 'get'"), RuntimeError("boom")])
    async def test_unexpected_payout_error_compensates(self, reconciler_for, fund, balance_of, gateway, session_factory, error):
        await fund("u1", "USDT", 200)
        gateway.create_payout.side_effect = error

        with pytest.raises(type(error)):
            await reconciler_for("initiate_withdrawal", "u1", 100, "USDT", "TAddr", "tron")

        assert await balance_of("u1", "USDT") == (pytest.approx(200), pytest.approx(0))
        async with session_factory() as session:
            withdrawals = await PaymentReconciler(session, gateway).list_transactions("u1", "WITHDRAWAL")
        assert [t.status for t in withdrawals] == [TransactionStatus.FAILED.value]

    @pytest.mark.asyncio
    async def test_withdrawal_without_wallet(self, reconciler_for):
        with pytest.raises(WalletNotFound):
            await reconciler_for("initiate_withdrawal", "u1", 100, "USDT", "TAddr", "tron")

    @pytest.mark.asyncio
    async def test_withdrawal_over_balance(self, reconciler_for, fund, balance_of, gateway):
        await fund("u1", "USDT", 100)

        with pytest.raises(InsufficientFunds):
            await reconciler_for("initiate_withdrawal", "u1", 100, "USDT", "TAddr", "tron")

        gateway.create_payout.assert_not_awaited()
        assert await balance_of("u1", "USDT") == (pytest.approx(100), 0.0)

    @pytest.mark.asyncio
    async def test_paid_webhook_releases_reservation(self, reconciler_for, fund, balance_of):
        await fund("u1", "USDT", 200)
        await reconciler_for("initiate_withdrawal", "u1", 100, "USDT", "TAddr", "tron")
        body, sign = signed({"uuid": "pay-1", "status": "paid", "txid": "0xdef", "type": "payout"})

        await reconciler_for("handle_callback", body, sign)
        await reconciler_for("handle_callback", body, sign)

        assert await balance_of("u1", "USDT") == (pytest.approx(99.5), pytest.approx(0))

    @pytest.mark.asyncio
    async def test_failed_payout_webhook_compensates_once(self, reconciler_for, fund, balance_of):
        await fund("u1", "USDT", 200)
        await reconciler_for("initiate_withdrawal", "u1", 100, "USDT", "TAddr", "tron")
        body, sign = signed({"uuid": "pay-1", "status": "fail", "type": "payout"})

        await reconciler_for("handle_callback", body, sign)
        await reconciler_for("handle_callback", body, sign)

        assert await balance_of("u1", "USDT") == (pytest.approx(200), pytest.approx(0))


class TestConcurrentCallbacks:

    @pytest.mark.asyncio
    async def test_same_paid_webhook_twice_at_once_credits_once(self, reconciler_for, balance_of):
        result = await reconciler_for("initiate_deposit", "u1", 100, "USDT")
        body, sign = signed({"uuid": "inv-1", "order_id": result["transaction"].order_id,
                             "status": "paid", "amount": "100"})

        responses = await asyncio.gather(
            reconciler_for("handle_callback", body, sign),
            reconciler_for("handle_callback", body, sign)
        )

        assert all(r["success"] is True for r in responses)
        assert await balance_of("u1", "USDT") == (pytest.approx(99.0), 0.0)

    @pytest.mark.asyncio
    async def test_same_failed_payout_webhook_twice_at_once_compensates_once(self, reconciler_for, fund, balance_of):
        await fund("u1", "USDT", 200)
        await reconciler_for("initiate_withdrawal", "u1", 100, "USDT", "TAddr", "tron")
        body, sign = signed({"uuid": "pay-1", "status": "fail", "type": "payout"})

        await asyncio.gather(
            reconciler_for("handle_callback", body, sign),
            reconciler_for("handle_callback", body, sign)
        )

        assert await balance_of("u1", "USDT") == (pytest.approx(200), pytest.approx(0))

    @pytest.mark.asyncio
    async def test_racing_withdrawals_reserve_once(self, reconciler_for, fund, balance_of, gateway, session_factory):
        await fund("u1", "USDT", 200)
        async with session_factory() as session:
            await PlatformSettingsService(session).load_or_initialize()
            await session.commit()

        outcomes = await asyncio.gather(
            reconciler_for("initiate_withdrawal", "u1", 150, "USDT", "TAddr", "tron"),
            reconciler_for("initiate_withdrawal", "u1", 150, "USDT", "TAddr", "tron"),
            return_exceptions=True
        )

        assert sum(isinstance(o, InsufficientFunds) for o in outcomes) == 1
        assert sum(isinstance(o, dict) for o in outcomes) == 1
        gateway.create_payout.assert_awaited_once()
        assert await balance_of("u1", "USDT") == (pytest.approx(49.25), pytest.approx(150.75))
        async with session_factory() as session:
            withdrawals = await PaymentReconciler(session, gateway).list_transactions("u1", "WITHDRAWAL")
        assert [t.status for t in withdrawals] == [TransactionStatus.PENDING.value]

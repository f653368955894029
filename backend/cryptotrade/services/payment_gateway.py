"""
Cryptomus 결제 게이트웨이 클라이언트
- 입금 인보이스 / 출금 페이아웃 생성
- 요청 서명: md5(base64(json) + api_key)
- 웹훅 서명 검증
"""

import asyncio
import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import aiohttp

from cryptotrade.config import get_settings
from cryptotrade.exceptions import PaymentGatewayError

logger = logging.getLogger(__name__)


def make_sign(body: Union[str, bytes], api_key: str) -> str:
    if isinstance(body, str):
        body = body.encode("utf-8")
    encoded = base64.b64encode(body).decode("ascii")
    return hashlib.md5((encoded + api_key).encode("utf-8")).hexdigest()


@dataclass
class Invoice:
    uuid: Optional[str]
    url: Optional[str]
    address: Optional[str]


@dataclass
class Payout:
    uuid: Optional[str]
    status: Optional[str]


class CryptomusGateway:
    """Cryptomus API"""

    def __init__(
        self,
        merchant_id: Optional[str] = None,
        payment_api_key: Optional[str] = None,
        payout_api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        config = get_settings()
        self.merchant_id = merchant_id if merchant_id is not None else config.cryptomus_merchant_id
        self.payment_api_key = payment_api_key if payment_api_key is not None else config.cryptomus_payment_api_key
        self.payout_api_key = payout_api_key if payout_api_key is not None else config.cryptomus_payout_api_key
        self.base_url = base_url or config.cryptomus_api_url
        self.timeout = timeout or config.http_timeout_seconds

    def verify_webhook(self, raw_body: Union[str, bytes], sign: str) -> bool:
        """웹훅 본문 서명 검증"""
        if not sign or not self.payment_api_key:
            return False
        expected = make_sign(raw_body, self.payment_api_key)
        return hmac.compare_digest(expected, sign)

    async def _request(self, endpoint: str, data: Dict[str, Any], payout: bool = False) -> Dict[str, Any]:
        api_key = self.payout_api_key if payout else self.payment_api_key
        payload = {k: v for k, v in data.items() if v is not None}
        body = json.dumps(payload, separators=(',', ':'))
        headers = {
            "merchant": self.merchant_id,
            "sign": make_sign(body, api_key),
            "Content-Type": "application/json",
        }

        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(f"{self.base_url}{endpoint}", data=body, headers=headers) as response:
                    result = await response.json(content_type=None)
                    if not isinstance(result, dict):
                        raise PaymentGatewayError(f"Cryptomus {endpoint} returned an unexpected body (HTTP {response.status})")
                    if response.status != 200 or result.get("state", 0) != 0:
                        message = result.get("message") or result.get("errors") or response.reason
                        raise PaymentGatewayError(f"Cryptomus {endpoint} failed: {message}")
                    return result.get("result") or {}
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"❌ Cryptomus {endpoint} request error: {e}")
            raise PaymentGatewayError(f"Cryptomus {endpoint} unavailable: {e}") from e

    async def create_invoice(
        self,
        amount: float,
        currency: str,
        order_id: str,
        callback_url: str,
        return_url: Optional[str] = None,
        success_url: Optional[str] = None,
        to_currency: Optional[str] = None,
        lifetime: int = 3600
    ) -> Invoice:
        """입금 인보이스 생성"""
        result = await self._request("/payment", {
            "amount": str(amount),
            "currency": currency,
            "order_id": order_id,
            "url_callback": callback_url,
            "url_return": return_url,
            "url_success": success_url,
            "lifetime": lifetime,
            "to_currency": to_currency,
        })
        return Invoice(uuid=result.get("uuid"), url=result.get("url"), address=result.get("address"))

    async def create_payout(
        self,
        amount: float,
        currency: str,
        order_id: str,
        address: str,
        network: str,
        callback_url: Optional[str] = None
    ) -> Payout:
        """출금 페이아웃 생성"""
        result = await self._request("/payout", {
            "amount": str(amount),
            "currency": currency,
            "order_id": order_id,
            "address": address,
            "network": network,
            "url_callback": callback_url,
        }, payout=True)
        return Payout(uuid=result.get("uuid"), status=result.get("status"))

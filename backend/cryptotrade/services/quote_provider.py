"""
시세 제공자
- Binance 공개 티커 (인증 불필요)
- 실패시 캐시 -> 정적 기준가 순으로 fallback (stale 표시)
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp

from cryptotrade.config import get_settings

logger = logging.getLogger(__name__)


# 외부 피드 장애시 사용하는 기준가
REFERENCE_PRICES: Dict[str, Dict[str, float]] = {
    'BTC/USDT': {'price': 43250.50, 'change24h': 2.35, 'high24h': 44100, 'low24h': 42200, 'volume24h': 1250000000},
    'ETH/USDT': {'price': 2635.75, 'change24h': 1.82, 'high24h': 2700, 'low24h': 2580, 'volume24h': 850000000},
    'BNB/USDT': {'price': 318.20, 'change24h': -0.45, 'high24h': 325, 'low24h': 315, 'volume24h': 120000000},
    'SOL/USDT': {'price': 102.45, 'change24h': 5.67, 'high24h': 108, 'low24h': 96, 'volume24h': 450000000},
    'XRP/USDT': {'price': 0.5520, 'change24h': -1.23, 'high24h': 0.58, 'low24h': 0.54, 'volume24h': 180000000},
    'ADA/USDT': {'price': 0.5125, 'change24h': 3.21, 'high24h': 0.53, 'low24h': 0.49, 'volume24h': 95000000},
    'DOGE/USDT': {'price': 0.0825, 'change24h': -2.15, 'high24h': 0.086, 'low24h': 0.080, 'volume24h': 75000000},
    'DOT/USDT': {'price': 7.45, 'change24h': 1.55, 'high24h': 7.65, 'low24h': 7.25, 'volume24h': 55000000},
}


@dataclass
class Quote:
    pair: str
    price: float
    source: str  # live, cache, mock
    stale: bool = False


class QuoteProvider:
    """페어별 현재가 조회"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        cache_ttl: Optional[float] = None,
        reference_prices: Optional[Dict[str, Dict[str, float]]] = None
    ):
        config = get_settings()
        self.base_url = base_url or config.quote_api_url
        self.timeout = timeout or config.http_timeout_seconds
        self.cache_ttl = cache_ttl if cache_ttl is not None else config.quote_cache_ttl_seconds
        self.reference_prices = reference_prices if reference_prices is not None else REFERENCE_PRICES
        self._cache: Dict[str, tuple] = {}  # pair -> (price, fetched_at)

    async def get_price(self, pair: str) -> Optional[Quote]:
        """
        현재가 조회

        Args:
            pair: 거래쌍 (예: BTC/USDT)

        Returns:
            Quote, 어떤 소스에서도 가격을 얻지 못하면 None
        """
        cached = self._cache.get(pair)
        if cached and time.monotonic() - cached[1] < self.cache_ttl:
            return Quote(pair=pair, price=cached[0], source="cache")

        try:
            price = await self._fetch_ticker_price(pair)
            if price and price > 0:
                self._cache[pair] = (price, time.monotonic())
                return Quote(pair=pair, price=price, source="live")
            logger.warning(f"⚠️ Empty ticker for {pair}")
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, KeyError) as e:
            logger.warning(f"⚠️ Quote feed unavailable for {pair}: {e}")

        if cached:
            return Quote(pair=pair, price=cached[0], source="cache", stale=True)

        reference = self.reference_prices.get(pair)
        if reference:
            return Quote(pair=pair, price=reference['price'], source="mock", stale=True)

        return None

    async def _fetch_ticker_price(self, pair: str) -> Optional[float]:
        symbol = pair.replace('/', '')
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(f"{self.base_url}/ticker/price", params={"symbol": symbol}) as response:
                if response.status != 200:
                    return None
                data = await response.json()
                return float(data["price"])

    async def list_prices(self) -> List[Dict[str, Any]]:
        """지원 페어 시세 요약 (24h 변동 포함)"""
        pairs = list(self.reference_prices.keys())
        try:
            tickers = await self._fetch_24h_tickers(pairs)
            by_symbol = {t["symbol"]: t for t in tickers}
            prices = []
            for pair in pairs:
                t = by_symbol.get(pair.replace('/', ''))
                if t is None:
                    prices.append({'pair': pair, **self.reference_prices[pair], 'stale': True})
                    continue
                prices.append({
                    'pair': pair,
                    'price': float(t["lastPrice"]),
                    'change24h': float(t["priceChangePercent"]),
                    'high24h': float(t["highPrice"]),
                    'low24h': float(t["lowPrice"]),
                    'volume24h': float(t["quoteVolume"]),
                    'stale': False,
                })
            return prices
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, KeyError) as e:
            logger.warning(f"⚠️ 24h ticker feed unavailable: {e}")
            return [{'pair': pair, **data, 'stale': True} for pair, data in self.reference_prices.items()]

    async def _fetch_24h_tickers(self, pairs: List[str]) -> List[Dict[str, Any]]:
        symbols = json.dumps([p.replace('/', '') for p in pairs], separators=(',', ':'))
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(f"{self.base_url}/ticker/24hr", params={"symbols": symbols}) as response:
                response.raise_for_status()
                return await response.json()

    async def usd_prices(self, currencies: List[str]) -> Dict[str, float]:
        """통화별 USD 가격 (스테이블코인은 1)"""
        prices = {}
        for currency in currencies:
            if currency in ("USDT", "USDC", "BUSD", "USD"):
                prices[currency] = 1.0
                continue
            quote = await self.get_price(f"{currency}/USDT")
            if quote:
                prices[currency] = quote.price
        return prices

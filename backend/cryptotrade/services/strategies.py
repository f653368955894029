"""
자동매매 봇 전략
- DCA: 정기 매수 (하락시 '저가 매수' 표시), 매도 없음
- GRID: 평균 진입가 대비 ±spread% 에서 매도/추가 매수
- SCALPER: RSI 과매도 진입, 목표 수익/손절/RSI 과매수 청산
모든 함수는 순수 함수 (DB/네트워크 접근 없음)
"""

from dataclasses import dataclass
from typing import Any, Dict, Sequence
import pandas as pd

from cryptotrade.models.bot import StrategyKind, DEFAULT_BOT_SETTINGS

BUY = "BUY"
SELL = "SELL"
HOLD = "HOLD"

RSI_OVERSOLD = 30
RSI_OVERBOUGHT = 70


@dataclass(frozen=True)
class StrategyDecision:
    action: str  # BUY / SELL / HOLD
    reason: str


def calculate_rsi(prices: Sequence[float], period: int = 14) -> float:
    """
    Relative Strength Index (상대 강도 지수)

    최근 period 개 가격 변화의 단순 평균 사용

    Args:
        prices: 가격 이력 (오래된 것 -> 최신)
        period: 기간 (기본 14)

    Returns:
        RSI (0-100), 데이터가 period + 1 개 미만이면 50
    """
    if len(prices) < period + 1:
        return 50.0

    delta = pd.Series(prices[-(period + 1):], dtype=float).diff().dropna()
    avg_gain = delta.where(delta > 0, 0.0).sum() / period
    avg_loss = -delta.where(delta < 0, 0.0).sum() / period

    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return float(100 - (100 / (1 + rs)))


def _profit_percent(current_price: float, avg_entry_price: float) -> float:
    if avg_entry_price <= 0:
        return 0.0
    return (current_price - avg_entry_price) / avg_entry_price * 100


def dca_strategy(current_price: float, previous_price: float, params: Dict[str, Any]) -> StrategyDecision:
    dip_threshold = params.get("dcaBuyOnDip") or DEFAULT_BOT_SETTINGS["dcaBuyOnDip"]
    price_change = (current_price - previous_price) / previous_price * 100 if previous_price > 0 else 0.0

    if price_change <= -dip_threshold:
        return StrategyDecision(BUY, f"Price dipped {price_change:.2f}% - buying the dip")
    return StrategyDecision(BUY, "Scheduled DCA purchase")


def grid_strategy(
    current_price: float,
    avg_entry_price: float,
    holdings: float,
    params: Dict[str, Any]
) -> StrategyDecision:
    spread = params.get("gridSpread") or DEFAULT_BOT_SETTINGS["gridSpread"]

    if holdings <= 0:
        return StrategyDecision(BUY, "No holdings - opening grid position")

    profit = _profit_percent(current_price, avg_entry_price)
    if profit >= spread:
        return StrategyDecision(SELL, f"Grid profit target hit: +{profit:.2f}%")
    if profit <= -spread:
        return StrategyDecision(BUY, f"Grid buy level hit: {profit:.2f}%")
    return StrategyDecision(HOLD, "Within grid range - holding")


def scalper_strategy(
    current_price: float,
    avg_entry_price: float,
    holdings: float,
    rsi: float,
    params: Dict[str, Any]
) -> StrategyDecision:
    profit_target = params.get("scalperProfit") or DEFAULT_BOT_SETTINGS["scalperProfit"]
    stop_loss = params.get("scalperStopLoss") or DEFAULT_BOT_SETTINGS["scalperStopLoss"]

    if holdings <= 0:
        if rsi < RSI_OVERSOLD:
            return StrategyDecision(BUY, f"RSI oversold ({rsi:.0f}) - scalp entry")
        return StrategyDecision(HOLD, f"Waiting for RSI oversold (current: {rsi:.0f})")

    profit = _profit_percent(current_price, avg_entry_price)
    if profit >= profit_target:
        return StrategyDecision(SELL, f"Scalp profit: +{profit:.2f}%")
    if profit <= -stop_loss:
        return StrategyDecision(SELL, f"Stop loss hit: {profit:.2f}%")
    if rsi > RSI_OVERBOUGHT and profit > 0:
        return StrategyDecision(SELL, f"RSI overbought ({rsi:.0f}) - taking profit")
    return StrategyDecision(HOLD, "Waiting for profit target or stop loss")


def evaluate_strategy(
    strategy: str,
    current_price: float,
    previous_price: float,
    avg_entry_price: float,
    holdings: float,
    price_history: Sequence[float],
    params: Dict[str, Any],
    rsi_period: int = 14
) -> StrategyDecision:
    """봇 전략에 따른 매매 결정"""
    # 평균 진입가가 없으면 현재가 기준
    entry = avg_entry_price or current_price

    if strategy == StrategyKind.DCA.value:
        return dca_strategy(current_price, previous_price, params)
    if strategy == StrategyKind.GRID.value:
        return grid_strategy(current_price, entry, holdings, params)
    if strategy == StrategyKind.SCALPER.value:
        rsi = calculate_rsi(price_history, rsi_period)
        return scalper_strategy(current_price, entry, holdings, rsi, params)
    return StrategyDecision(HOLD, "Unknown strategy")

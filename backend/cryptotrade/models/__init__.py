from cryptotrade.models.wallet import Wallet
from cryptotrade.models.trade import Trade, TradeSide, OrderKind, TradeStatus
from cryptotrade.models.transaction import Transaction, TransactionType, TransactionStatus
from cryptotrade.models.bot import TradingBot, BotTrade, StrategyKind
from cryptotrade.models.platform_settings import PlatformSettings, TradingMode

__all__ = [
    'Wallet',
    'Trade',
    'TradeSide',
    'OrderKind',
    'TradeStatus',
    'Transaction',
    'TransactionType',
    'TransactionStatus',
    'TradingBot',
    'BotTrade',
    'StrategyKind',
    'PlatformSettings',
    'TradingMode',
]

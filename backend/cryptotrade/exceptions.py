"""
도메인 예외 정의
- 서비스 레이어는 아래 예외만 발생시키고
- API 레이어에서 status_code 로 HTTP 응답 변환
"""


class TradingError(Exception):
    """모든 도메인 예외의 기반 클래스"""
    status_code = 500
    retryable = False

    def __init__(self, message: str = None):
        self.message = message or self.__class__.__doc__ or self.__class__.__name__
        super().__init__(self.message)


# 입력 검증 ----------------------------------------------------------------

class ValidationError(TradingError):
    """Invalid request"""
    status_code = 400


class InvalidAmount(ValidationError):
    """Invalid amount"""


class InvalidPair(ValidationError):
    """Invalid trading pair"""


class InvalidPrice(ValidationError):
    """Invalid price"""


class InsufficientFunds(TradingError):
    """Insufficient balance"""
    status_code = 400


InsufficientBalance = InsufficientFunds


# 조회 실패 ----------------------------------------------------------------

class NotFoundError(TradingError):
    status_code = 404


class WalletNotFound(NotFoundError):
    """Wallet not found"""


class TransactionNotFound(NotFoundError):
    """Transaction not found"""


class BotNotFound(NotFoundError):
    """Bot not found"""


class ConflictError(TradingError):
    status_code = 409


class BotAlreadyExists(ConflictError):
    """Bot already exists for this pair and strategy"""


# 외부 서비스 ---------------------------------------------------------------

class ExternalServiceError(TradingError):
    """External service unavailable"""
    status_code = 502
    retryable = True


class QuoteUnavailable(ExternalServiceError):
    """Failed to fetch price"""


class ExchangeExecutionFailed(ExternalServiceError):
    """Exchange order rejected"""


class PaymentGatewayError(ExternalServiceError):
    """Payment gateway request failed"""


# 인증/권한 ----------------------------------------------------------------

class Unauthorized(TradingError):
    """Unauthorized"""
    status_code = 401


class SignatureInvalid(Unauthorized):
    """Invalid signature"""


class AdminRequired(TradingError):
    """Admin access required"""
    status_code = 403


class LedgerInconsistency(TradingError):
    """Ledger state does not match the transaction being settled"""
    status_code = 500

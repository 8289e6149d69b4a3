from fastapi import HTTPException, status
from typing import Optional, Dict, Any


class BaseAPIException(HTTPException):
    """Base exception for API errors"""

    # 세션 에러로 변환될 때 사용되는 분류값
    category = "network"
    retryable = False

    def __init__(
        self,
        status_code: int,
        error_code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}

        super().__init__(
            status_code=status_code,
            detail={
                "success": False,
                "error": {
                    "code": error_code,
                    "message": message,
                    "details": self.details
                }
            }
        )

    def __str__(self) -> str:  # Ensure str(e) returns the human message
        return self.message


class AuthenticationError(BaseAPIException):
    """Authentication related errors"""
    def __init__(self, message: str = "Authentication failed", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_code="AUTH_001",
            message=message,
            details=details
        )


class ValidationError(BaseAPIException):
    """로컬 전제조건 위반 (패키지 미선택, 금액 범위 초과 등) - 서버로 전송되지 않음"""

    category = "validation"

    def __init__(self, message: str = "Validation failed", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="VALIDATION_001",
            message=message,
            details=details
        )


class NotFoundError(BaseAPIException):
    """Resource not found errors"""
    def __init__(self, message: str = "Resource not found", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="NOT_FOUND_001",
            message=message,
            details=details
        )


class ConflictError(BaseAPIException):
    """Resource conflict errors"""
    def __init__(self, message: str = "Resource conflict", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error_code="CONFLICT_001",
            message=message,
            details=details
        )


class InternalServerError(BaseAPIException):
    """Internal server errors"""
    def __init__(self, message: str = "Internal server error", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="INTERNAL_001",
            message=message,
            details=details
        )


class CatalogUnavailableError(BaseAPIException):
    """코인 패키지 카탈로그 조회 실패 - 전체 플로우 재로딩으로 복구"""

    retryable = True

    def __init__(self, message: str = "Failed to load coin packages", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="CATALOG_001",
            message=message,
            details=details
        )


class GatewayUnavailableError(BaseAPIException):
    """결제 SDK 로딩 실패 - 해결될 때까지 결제 버튼 비활성화"""

    retryable = True

    def __init__(self, message: str = "Failed to load payment system", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="GATEWAY_001",
            message=message,
            details=details
        )


class PaymentDeclinedError(BaseAPIException):
    """게이트웨이가 결제 실패를 보고한 경우 (네트워크 오류가 아님)"""

    category = "payment"
    retryable = True

    def __init__(self, message: str = "Payment failed", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            error_code="PAYMENT_001",
            message=message,
            details=details
        )


class PaymentCancelledError(BaseAPIException):
    """사용자가 체크아웃 창을 닫았거나 체크아웃이 만료된 경우"""

    category = "payment"
    retryable = True

    def __init__(self, message: str = "Payment was cancelled by user", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error_code="PAYMENT_002",
            message=message,
            details=details
        )


class LedgerFetchError(BaseAPIException):
    """거래 내역 조회/내보내기 실패 - 잔액이나 결제 상태에는 영향 없음"""

    retryable = True

    def __init__(self, message: str = "Failed to fetch transactions", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            error_code="LEDGER_001",
            message=message,
            details=details
        )


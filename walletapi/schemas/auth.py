from pydantic import BaseModel, Field
from typing import Optional
from enum import Enum


class ErrorCode(str, Enum):
    # Auth related
    UNAUTHORIZED = "AUTH_001"

    # Local validation
    VALIDATION_FAILED = "VALIDATION_001"

    # Wallet
    CATALOG_UNAVAILABLE = "CATALOG_001"
    GATEWAY_UNAVAILABLE = "GATEWAY_001"
    PAYMENT_DECLINED = "PAYMENT_001"
    PAYMENT_CANCELLED = "PAYMENT_002"
    LEDGER_FETCH_FAILED = "LEDGER_001"

    # Platform API transport
    PLATFORM_TIMEOUT = "PLATFORM_001"
    PLATFORM_UNAVAILABLE = "PLATFORM_002"
    PLATFORM_REJECTED = "PLATFORM_003"
    PLATFORM_BAD_RESPONSE = "PLATFORM_004"


class WalletUser(BaseModel):
    """업스트림 인증 계층이 확인한 사용자 정보

    게이트웨이 결제창 prefill에 name/email/contact가 사용됩니다.
    """

    id: str = Field(..., min_length=1, description="플랫폼 사용자 ID")
    token: str = Field(..., description="플랫폼 백엔드로 전달할 Bearer 토큰")
    name: Optional[str] = Field(None, description="표시 이름")
    email: Optional[str] = Field(None, description="이메일")
    contact: Optional[str] = Field(None, description="전화번호")

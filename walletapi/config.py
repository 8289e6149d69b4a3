from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file="walletapi/.env",
        env_file_encoding="utf-8",
        extra="allow",
    )
    # Application
    APP_NAME: str = "Coin Wallet API"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_HTTP_CLIENT_LEVEL: str = "WARNING"  # httpx / httpcore
    CORS_ALLOWED_ORIGINS: List[str] = ["*"]

    # Platform backend (catalog, ledger, balance, payment order/verify, rewards)
    PLATFORM_API_BASE_URL: str = "http://localhost:3000"
    PLATFORM_API_TIMEOUT_SECONDS: float = 10.0
    PLATFORM_API_RETRY_COUNT: int = 3  # 조회 요청만 재시도
    PLATFORM_API_RETRY_BACKOFF_SECONDS: float = 0.5

    # Hosted checkout (Razorpay)
    CHECKOUT_SCRIPT_URL: str = "https://checkout.razorpay.com/v1/checkout.js"
    CHECKOUT_KEY_ID: str = ""
    CHECKOUT_SDK_TIMEOUT_SECONDS: float = 10.0
    CHECKOUT_PAYMENT_TIMEOUT_SECONDS: float = 900.0  # 콜백 없이 이 시간이 지나면 cancelled 처리
    CHECKOUT_CURRENCY: str = "INR"

    # Purchase flow
    PURCHASE_SUCCESS_CLOSE_DELAY_SECONDS: float = 2.5
    BALANCE_REFRESH_AFTER_SUCCESS: bool = True

    # Top-up (custom amount, 루피 단위)
    TOPUP_MIN_RUPEES: int = 10
    TOPUP_MAX_RUPEES: int = 10000

    # Ledger
    LEDGER_DEFAULT_LIMIT: int = 20
    LEDGER_MAX_LIMIT: int = 100
    LEDGER_EXPORT_LIMIT: int = 10000


settings = Settings()

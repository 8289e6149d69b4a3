import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from mangum import Mangum
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from walletapi import containers
from walletapi.config import settings
from walletapi.core.exception_handlers import (
    handle_base_api_exception,
    handle_http_exception,
    handle_unexpected_error,
    handle_validation_error,
)
from walletapi.core.exceptions import BaseAPIException
from walletapi.core.logging_middleware import LoggingMiddleware
from walletapi.logging_config import setup_logging
from walletapi.routers import (
    health_router,
    ledger_router,
    payment_router,
    purchase_router,
    reward_router,
    wallet_router,
)

load_dotenv("walletapi/.env")
setup_logging(settings.LOG_LEVEL, settings.LOG_HTTP_CLIENT_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # 종료 시 진행 중인 체크아웃은 cancelled 로 정리
    await app.container.gateways.checkout_gateway().shutdown()  # type: ignore[attr-defined]
    await app.container.gateways.platform_client().close()  # type: ignore[attr-defined]
    logger.info("Wallet API shut down")


def create_app() -> FastAPI:
    app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG, lifespan=lifespan)
    app.container = containers.Container()  # type: ignore

    app.add_middleware(LoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(BaseAPIException, handle_base_api_exception)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    @app.get("/")
    def hello() -> dict:
        return {"message": settings.APP_NAME}

    app.include_router(health_router.router, prefix=settings.API_V1_STR)
    app.include_router(wallet_router.router, prefix=settings.API_V1_STR)
    app.include_router(purchase_router.router, prefix=settings.API_V1_STR)
    app.include_router(payment_router.router, prefix=settings.API_V1_STR)
    app.include_router(ledger_router.router, prefix=settings.API_V1_STR)
    app.include_router(reward_router.router, prefix=settings.API_V1_STR)
    return app


app = create_app()

handler = Mangum(app)

import logging
import logging.config
import sys

# 결제 흐름 로그는 LOG_LEVEL 과 관계없이 최소 INFO 까지 남김
PAYMENT_LOGGERS = (
    "walletapi.providers.gateway",
    "walletapi.services.purchase_service",
)
# 외부 HTTP 클라이언트는 요청마다 INFO 로그를 남기므로 별도 레벨을 둠
HTTP_CLIENT_LOGGERS = ("httpx", "httpcore")


def _at_most_info(log_level: str) -> str:
    level = logging.getLevelName(log_level)
    if isinstance(level, int) and level > logging.INFO:
        return "INFO"
    return log_level


def setup_logging(log_level: str = "INFO", http_client_level: str = "WARNING"):
    log_level = log_level.upper()
    http_client_level = http_client_level.upper()

    loggers = {
        "": {  # root logger
            "handlers": ["console", "error_console"],
            "level": log_level,
        },
        "uvicorn.access": {
            "handlers": ["console"],
            "level": log_level,
            "propagate": False,
        },
        "walletapi": {
            "handlers": ["console", "error_console"],
            "level": log_level,
            "propagate": False,
        },
    }
    for name in PAYMENT_LOGGERS:
        # 핸들러는 walletapi 로거에서 상속
        loggers[name] = {"level": _at_most_info(log_level)}
    for name in HTTP_CLIENT_LOGGERS:
        loggers[name] = {"level": http_client_level}

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "detailed": {
                    "format": "%(asctime)s | %(levelname)-8s | %(name)s\n%(pathname)s:%(lineno)d\n%(message)s",
                },
                "simple": {
                    "format": "%(asctime)s | %(levelname)-8s | %(name)-40s | %(message)s",
                },
            },
            "handlers": {
                "console": {
                    "formatter": "simple",
                    "class": "logging.StreamHandler",
                    "stream": sys.stdout,
                },
                "error_console": {
                    "formatter": "detailed",
                    "class": "logging.StreamHandler",
                    "stream": sys.stderr,
                    "level": "WARNING",
                },
            },
            "loggers": loggers,
        }
    )

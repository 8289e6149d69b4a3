import logging

from walletapi.core.exceptions import CatalogUnavailableError
from walletapi.providers.platform.client import PlatformAPIClient, PlatformAPIError
from walletapi.schemas.coins import CoinPackageCatalog

logger = logging.getLogger(__name__)


class CatalogService:
    """코인 패키지 카탈로그 로더

    구매 플로우를 열 때마다 새로 조회하며 캐시하지 않습니다.
    """

    def __init__(self, platform_client: PlatformAPIClient):
        self.platform_client = platform_client

    async def load_packages(self, token: str) -> CoinPackageCatalog:
        """패키지 목록 조회

        Returns:
            CoinPackageCatalog: 백엔드 순서 그대로의 패키지 목록 (빈 목록 가능)

        Raises:
            CatalogUnavailableError: 네트워크/HTTP 오류
        """
        try:
            catalog = await self.platform_client.get_coin_packages(token)
        except PlatformAPIError as e:
            logger.error(f"Failed to load coin packages: {e.message}")
            raise CatalogUnavailableError(
                e.message or "Failed to load coin packages",
                details={"status": e.status_code, "network": e.network},
            )

        if not catalog.packages:
            logger.info("Coin package catalog is empty")
        else:
            logger.info(f"Loaded {len(catalog.packages)} coin packages")
        return catalog

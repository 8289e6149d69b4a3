from dependency_injector import containers, providers

from walletapi.config import Settings
from walletapi.providers.gateway.checkout import CheckoutGateway
from walletapi.providers.platform.client import PlatformAPIClient
from walletapi.services.balance_service import BalanceService
from walletapi.services.catalog_service import CatalogService
from walletapi.services.ledger_service import LedgerService
from walletapi.services.purchase_service import PurchaseSessionManager
from walletapi.services.reward_service import RewardService


class ConfigModule(containers.DeclarativeContainer):
    """Application configuration."""

    config = providers.Singleton(Settings)


class GatewayModule(containers.DeclarativeContainer):
    """External collaborators (platform backend, hosted checkout)."""

    config = providers.DependenciesContainer()

    platform_client = providers.Singleton(PlatformAPIClient, settings=config.config)
    checkout_gateway = providers.Singleton(
        CheckoutGateway, settings=config.config, platform_client=platform_client
    )


class ServiceModule(containers.DeclarativeContainer):
    """Service layer dependencies.

    서비스가 사용자별 메모리 상태(잔액, 구매 세션, 거래 내역 화면)를 들고 있으므로
    모두 Singleton 입니다.
    """

    config = providers.DependenciesContainer()
    gateways = providers.DependenciesContainer()

    balance_service = providers.Singleton(
        BalanceService, platform_client=gateways.platform_client
    )
    catalog_service = providers.Singleton(
        CatalogService, platform_client=gateways.platform_client
    )
    ledger_service = providers.Singleton(
        LedgerService, settings=config.config, platform_client=gateways.platform_client
    )
    purchase_manager = providers.Singleton(
        PurchaseSessionManager,
        settings=config.config,
        catalog_service=catalog_service,
        gateway=gateways.checkout_gateway,
        balance_service=balance_service,
        ledger_service=ledger_service,
    )
    reward_service = providers.Singleton(
        RewardService,
        platform_client=gateways.platform_client,
        balance_service=balance_service,
        ledger_service=ledger_service,
    )


class Container(containers.DeclarativeContainer):
    """Application container."""

    config = providers.Container(ConfigModule)
    gateways = providers.Container(GatewayModule, config=config)
    services = providers.Container(
        ServiceModule, config=config, gateways=gateways
    )

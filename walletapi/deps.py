from fastapi import Request

from walletapi.config import Settings
from walletapi.providers.gateway.checkout import CheckoutGateway
from walletapi.services.balance_service import BalanceService
from walletapi.services.catalog_service import CatalogService
from walletapi.services.ledger_service import LedgerService
from walletapi.services.purchase_service import PurchaseSessionManager
from walletapi.services.reward_service import RewardService


def get_settings(request: Request) -> Settings:
    return request.app.container.config.config()


def get_checkout_gateway(request: Request) -> CheckoutGateway:
    return request.app.container.gateways.checkout_gateway()


def get_balance_service(request: Request) -> BalanceService:
    return request.app.container.services.balance_service()


def get_catalog_service(request: Request) -> CatalogService:
    return request.app.container.services.catalog_service()


def get_ledger_service(request: Request) -> LedgerService:
    return request.app.container.services.ledger_service()


def get_purchase_manager(request: Request) -> PurchaseSessionManager:
    return request.app.container.services.purchase_manager()


def get_reward_service(request: Request) -> RewardService:
    return request.app.container.services.reward_service()

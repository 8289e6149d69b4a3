import asyncio
from decimal import Decimal

import pytest

from walletapi.schemas.purchase import PurchaseSelection, PurchaseState
from walletapi.services.balance_service import BalanceService
from walletapi.services.topup_service import TOPUP_TIERS, TopUpFlow


@pytest.fixture
def flow(settings, platform, gateway, user):
    return TopUpFlow(
        session_id="topup-1",
        user=user,
        gateway=gateway,
        balance_store=BalanceService(platform).store_for(user.id),
        settings=settings,
    )


def open_and_select(flow, gateway, selection: PurchaseSelection):
    async def scenario():
        await flow.open()
        await gateway.load_sdk()
        selected = flow.select(selection)
        confirmed = await flow.confirm()
        return selected, confirmed

    return asyncio.run(scenario())


class TestTopUpTiers:
    """고정 충전 옵션"""

    def test_tier_totals_include_bonus(self):
        totals = {tier.id: tier.total_coins for tier in TOPUP_TIERS}
        assert totals == {"basic": 100, "popular": 550, "premium": 1200, "ultimate": 3250}

    def test_only_popular_tier_is_flagged(self):
        assert [tier.id for tier in TOPUP_TIERS if tier.popular] == ["popular"]

    def test_tier_serializes_computed_fields(self):
        data = TOPUP_TIERS[1].model_dump()
        assert data["total_coins"] == 550
        assert data["price_per_coin"] == Decimal("0.82")

    def test_tier_purchase_goes_to_processing(self, flow, gateway, platform):
        _, confirmed = open_and_select(flow, gateway, PurchaseSelection(tier_id="premium"))

        assert confirmed.state == PurchaseState.PROCESSING
        assert confirmed.amount == Decimal("799")
        assert confirmed.total_coins == 1200
        assert platform.order_count == 1


class TestCustomAmount:
    """직접 입력 금액 (₹10 ~ ₹10,000, 1 루피 = 20 코인)"""

    @pytest.mark.parametrize(
        "rupees,message",
        [
            ("9.99", "Minimum top-up amount is ₹10"),
            ("10000.01", "Maximum top-up amount is ₹10,000"),
        ],
    )
    def test_out_of_bounds_never_reaches_processing(self, flow, gateway, platform, rupees, message):
        selected, confirmed = open_and_select(
            flow, gateway, PurchaseSelection(custom_rupees=Decimal(rupees))
        )

        assert selected.validation_message == message
        assert confirmed.state == PurchaseState.SELECTING
        assert confirmed.validation_message == message
        assert confirmed.can_pay is False
        assert platform.order_count == 0

    def test_custom_amount_is_not_clamped(self, flow, gateway):
        selected, _ = open_and_select(
            flow, gateway, PurchaseSelection(custom_rupees=Decimal("20000"))
        )
        assert selected.custom_rupees == Decimal("20000")

    @pytest.mark.parametrize(
        "rupees,coins",
        [("10", 200), ("10.99", 219), ("10000", 200000)],
    )
    def test_custom_amount_coins(self, flow, gateway, rupees, coins):
        _, confirmed = open_and_select(
            flow, gateway, PurchaseSelection(custom_rupees=Decimal(rupees))
        )

        assert confirmed.state == PurchaseState.PROCESSING
        assert confirmed.total_coins == coins
        assert confirmed.amount == Decimal(rupees)

    def test_custom_amount_replaces_tier(self, flow, gateway):
        async def scenario():
            await flow.open()
            flow.select(PurchaseSelection(tier_id="basic"))
            return flow.select(PurchaseSelection(custom_rupees=Decimal("50")))

        snapshot = asyncio.run(scenario())

        assert snapshot.selected_tier_id is None
        assert snapshot.total_coins == 1000

    def test_missing_selection(self, flow, gateway):
        async def scenario():
            await flow.open()
            return flow.select(PurchaseSelection())

        snapshot = asyncio.run(scenario())

        assert snapshot.validation_message == "Please select a top-up option"

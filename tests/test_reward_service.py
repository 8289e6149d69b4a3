import asyncio

import pytest

from conftest import network_error, rejected_error
from walletapi.core.exceptions import BaseAPIException, NotFoundError
from walletapi.services.balance_service import BalanceService
from walletapi.services.reward_service import RewardService

REWARDS = {
    "tasks": [
        {"id": "t-daily", "title": "Daily login", "reward": 10, "type": "daily"},
        {
            "id": "t-weekly",
            "title": "Watch 7 videos",
            "reward": 50,
            "type": "weekly",
            "progress": {"current": 3, "target": 7},
        },
        {"id": "t-done", "title": "First purchase", "reward": 5, "type": "achievement", "completed": True},
    ],
    "stats": {"totalEarned": 100, "availableToday": 60, "streakDays": 2, "completedTasks": 4},
}


@pytest.fixture
def balance_service(platform, user):
    platform.balance = 1000
    service = BalanceService(platform)
    asyncio.run(service.refresh(user))
    return service


@pytest.fixture
def rewards(platform, balance_service):
    platform.rewards = REWARDS
    return RewardService(platform, balance_service)


class TestGetRewards:
    def test_claimable_flags(self, rewards, user):
        response = asyncio.run(rewards.get_rewards(user))

        flags = {task.id: task.claimable for task in response.tasks}
        assert flags == {"t-daily": True, "t-weekly": False, "t-done": False}
        assert response.stats.total_earned == 100

    def test_first_load_failure(self, platform, balance_service, user):
        """최초 조회 실패는 에러, 이후 실패는 마지막 목록 유지"""

        class FailingPlatform(type(platform)):
            async def get_rewards(self, token):
                raise network_error()

        service = RewardService(FailingPlatform(), balance_service)

        with pytest.raises(BaseAPIException) as exc_info:
            asyncio.run(service.get_rewards(user))

        assert exc_info.value.status_code == 503
        assert exc_info.value.message == "Failed to load rewards"
        assert exc_info.value.details["retryable"] is True


class TestClaimReward:
    """보상 수령 (낙관적 적립 + 거절 시 복구)"""

    def test_claim_credits_immediately(self, rewards, platform, balance_service, user):
        # When
        result = asyncio.run(rewards.claim(user, "t-daily"))

        # Then
        assert result.success is True
        assert result.reward == 10
        assert result.message == "You earned 10 coins!"
        assert result.displayed_balance == 1010
        assert platform.claim_calls == ["t-daily"]
        board = rewards.board_for(user.id)
        assert board.find("t-daily").completed is True
        assert board.stats.total_earned == 110
        assert board.stats.completed_tasks == 5
        assert board.stats.available_today == 50

    def test_second_claim_makes_no_server_call(self, rewards, platform, user):
        async def scenario():
            first = await rewards.claim(user, "t-daily")
            second = await rewards.claim(user, "t-daily")
            return first, second

        first, second = asyncio.run(scenario())

        assert first.success is True
        assert second.success is False
        assert second.message == "Reward already claimed"
        assert second.displayed_balance == 1010
        assert platform.claim_calls == ["t-daily"]

    def test_unfinished_task_is_not_claimable(self, rewards, platform, user):
        result = asyncio.run(rewards.claim(user, "t-weekly"))

        assert result.success is False
        assert result.message == "Task not finished yet (3/7)"
        assert platform.claim_calls == []

    def test_completed_task_from_server(self, rewards, platform, user):
        result = asyncio.run(rewards.claim(user, "t-done"))

        assert result.success is False
        assert platform.claim_calls == []

    def test_rejected_claim_rolls_back(self, rewards, platform, balance_service, user):
        platform.claim_error = rejected_error("Daily limit reached")

        result = asyncio.run(rewards.claim(user, "t-daily"))

        assert result.success is False
        assert result.message == "Daily limit reached"
        assert result.displayed_balance == 1000
        board = rewards.board_for(user.id)
        assert board.find("t-daily").completed is False
        assert board.stats.total_earned == 100
        assert balance_service.store_for(user.id).optimistic_delta == 0

    def test_rejection_after_refresh_keeps_server_balance(
        self, rewards, platform, balance_service, user
    ):
        """수령 요청 중 잔액이 재조회되면 거절되어도 확정 잔액 아래로 내려가지 않음"""
        store = balance_service.store_for(user.id)
        platform.claim_error = rejected_error("Daily limit reached")
        gate = asyncio.Event()
        claim_reward = platform.claim_reward

        async def gated_claim(token, task_id):
            await gate.wait()
            return await claim_reward(token, task_id)

        platform.claim_reward = gated_claim

        async def scenario():
            claim = asyncio.ensure_future(rewards.claim(user, "t-daily"))
            await asyncio.sleep(0.01)
            displayed_while_claiming = store.displayed
            await balance_service.refresh(user)
            gate.set()
            return displayed_while_claiming, await claim

        displayed_while_claiming, result = asyncio.run(scenario())

        assert displayed_while_claiming == 1010
        assert result.success is False
        assert result.displayed_balance == 1000
        assert store.displayed == 1000
        assert store.optimistic_delta == 0

    def test_reward_and_purchase_credits_add_up(self, rewards, balance_service, user):
        """구매 적립과 보상 적립이 겹쳐도 둘 다 반영"""
        store = balance_service.store_for(user.id)
        store.apply_optimistic_credit(200)

        result = asyncio.run(rewards.claim(user, "t-daily"))

        assert result.displayed_balance == 1210
        assert store.optimistic_delta == 210

    def test_unknown_task(self, rewards, user):
        with pytest.raises(NotFoundError):
            asyncio.run(rewards.claim(user, "t-missing"))

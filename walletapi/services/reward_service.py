from datetime import datetime, timezone
from typing import Dict, List, Optional, Set
import logging

from fastapi import status

from walletapi.core.exceptions import BaseAPIException, NotFoundError
from walletapi.providers.platform.client import PlatformAPIClient, PlatformAPIError
from walletapi.schemas.auth import WalletUser
from walletapi.schemas.rewards import (
    RewardClaimResponse,
    RewardStats,
    RewardsResponse,
    RewardTaskView,
)
from walletapi.services.balance_service import BalanceService
from walletapi.utils.coin_utils import format_coins

logger = logging.getLogger(__name__)


class RewardBoard:
    """사용자 1명의 보상 과제 목록과 통계"""

    def __init__(self):
        self.tasks: List[RewardTaskView] = []
        self.stats = RewardStats()
        self.claiming: Set[str] = set()
        self.loaded = False

    def find(self, task_id: str) -> Optional[RewardTaskView]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def replace(self, task: RewardTaskView) -> None:
        self.tasks = [task if t.id == task.id else t for t in self.tasks]

    def view(self) -> RewardsResponse:
        return RewardsResponse(
            tasks=[
                task.model_copy(
                    update={
                        "claimable": task.can_claim and task.id not in self.claiming,
                        "claiming": task.id in self.claiming,
                    }
                )
                for task in self.tasks
            ],
            stats=self.stats,
        )


class RewardService:
    """보상 과제 조회/수령

    수령은 낙관적으로 먼저 적립한 뒤 서버에 요청하고, 서버가 거절하면
    적립과 완료 표시를 모두 되돌립니다.
    """

    def __init__(
        self,
        platform_client: PlatformAPIClient,
        balance_service: BalanceService,
        ledger_service=None,
    ):
        self.platform_client = platform_client
        self.balance_service = balance_service
        self.ledger_service = ledger_service
        self._boards: Dict[str, RewardBoard] = {}

    def board_for(self, user_id: str) -> RewardBoard:
        board = self._boards.get(user_id)
        if board is None:
            board = RewardBoard()
            self._boards[user_id] = board
        return board

    async def get_rewards(self, user: WalletUser) -> RewardsResponse:
        """과제 목록과 통계 조회

        Args:
            user: 요청 사용자

        Returns:
            RewardsResponse: claimable / claiming 플래그가 채워진 과제 목록
        """
        board = self.board_for(user.id)
        try:
            response = await self.platform_client.get_rewards(user.token)
        except PlatformAPIError as e:
            logger.error(f"Failed to load rewards for user {user.id}: {e.message}")
            if board.loaded:
                return board.view()
            # 네트워크 오류는 재시도 가능한 503, 백엔드 거절은 그 상태 코드 그대로
            raise BaseAPIException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE if e.network else e.status_code,
                error_code=e.error_code.value,
                message="Failed to load rewards",
                details={"reason": e.message, "retryable": e.network},
            )

        # 수령 중인 과제는 서버 응답보다 로컬 상태를 우선
        previous = {task.id: task for task in board.tasks if task.id in board.claiming}
        board.tasks = [previous.get(task.id, task) for task in response.tasks]
        board.stats = response.stats
        board.loaded = True
        logger.info(f"Loaded {len(board.tasks)} reward tasks for user {user.id}")
        return board.view()

    async def claim(self, user: WalletUser, task_id: str) -> RewardClaimResponse:
        """보상 수령

        Args:
            user: 요청 사용자
            task_id: 과제 ID

        Returns:
            RewardClaimResponse: 수령 결과 (이미 받은 과제는 서버 요청 없이 success=False)
        """
        board = self.board_for(user.id)
        if not board.loaded:
            await self.get_rewards(user)

        task = board.find(task_id)
        if task is None:
            raise NotFoundError(f"Reward task not found: {task_id}")

        store = self.balance_service.store_for(user.id)

        if task.completed:
            logger.warning(f"Reward task {task_id} already claimed by user {user.id}")
            return RewardClaimResponse(
                success=False,
                task_id=task_id,
                message="Reward already claimed",
                displayed_balance=store.displayed,
            )
        if task_id in board.claiming:
            return RewardClaimResponse(
                success=False,
                task_id=task_id,
                message="Reward claim already in progress",
                displayed_balance=store.displayed,
            )
        if not task.can_claim:
            progress = task.progress
            return RewardClaimResponse(
                success=False,
                task_id=task_id,
                message=(
                    f"Task not finished yet ({progress.current}/{progress.target})"
                    if progress
                    else "Task not finished yet"
                ),
                displayed_balance=store.displayed,
            )

        # 낙관적 적립
        previous_task, previous_stats = task, board.stats
        board.claiming.add(task_id)
        board.replace(
            task.model_copy(
                update={"completed": True, "completed_at": datetime.now(timezone.utc)}
            )
        )
        board.stats = previous_stats.model_copy(
            update={
                "total_earned": previous_stats.total_earned + task.reward,
                "completed_tasks": previous_stats.completed_tasks + 1,
                "available_today": max(previous_stats.available_today - task.reward, 0),
            }
        )
        store.apply_optimistic_credit(task.reward)
        credit_epoch = store.credit_epoch

        try:
            result = await self.platform_client.claim_reward(user.token, task_id)
            rejected = isinstance(result, dict) and result.get("success") is False
            reason = (result or {}).get("error") if isinstance(result, dict) else None
        except PlatformAPIError as e:
            rejected, reason = True, e.message
        finally:
            board.claiming.discard(task_id)

        if rejected:
            board.replace(previous_task)
            board.stats = previous_stats
            store.rollback_optimistic_credit(task.reward, epoch=credit_epoch)
            message = str(reason) if reason else "Failed to claim reward"
            logger.warning(f"Reward claim rejected for user {user.id}, task {task_id}: {message}")
            return RewardClaimResponse(
                success=False,
                task_id=task_id,
                message=message,
                displayed_balance=store.displayed,
            )

        logger.info(f"User {user.id} claimed reward {task_id}: +{task.reward} coins")
        if self.ledger_service is not None:
            self.ledger_service.invalidate(user)
        return RewardClaimResponse(
            success=True,
            task_id=task_id,
            reward=task.reward,
            message=f"You earned {format_coins(task.reward)}!",
            displayed_balance=store.displayed,
        )

from fastapi import APIRouter, Depends, Path

from walletapi.core.auth import get_current_user
from walletapi.deps import get_reward_service
from walletapi.schemas.auth import WalletUser
from walletapi.schemas.rewards import RewardClaimResponse, RewardsResponse
from walletapi.services.reward_service import RewardService

# 보상 과제 API 라우터
router = APIRouter(prefix="/rewards", tags=["rewards"])


@router.get("", response_model=RewardsResponse)
async def get_rewards(
    current_user: WalletUser = Depends(get_current_user),
    reward_service: RewardService = Depends(get_reward_service),
) -> RewardsResponse:
    """
    보상 과제 목록과 통계

    Returns:
        RewardsResponse: 과제별 claimable / claiming 플래그 포함
    """
    return await reward_service.get_rewards(current_user)


@router.post("/{task_id}/claim", response_model=RewardClaimResponse)
async def claim_reward(
    task_id: str = Path(..., description="과제 ID"),
    current_user: WalletUser = Depends(get_current_user),
    reward_service: RewardService = Depends(get_reward_service),
) -> RewardClaimResponse:
    """
    보상 수령 - 즉시 잔액에 반영되고 서버가 거절하면 되돌림

    이미 받은 과제나 진행도가 부족한 과제는 서버 요청 없이 success=false 로 응답합니다.
    """
    return await reward_service.claim(current_user, task_id)

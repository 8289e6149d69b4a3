from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import Field

from walletapi.schemas.base import CamelModel


class RewardTaskType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    ACHIEVEMENT = "achievement"
    REFERRAL = "referral"


class RewardProgress(CamelModel):
    current: int = Field(0, ge=0)
    target: int = Field(..., ge=1)

    @property
    def reached(self) -> bool:
        return self.current >= self.target


class RewardTask(CamelModel):
    """코인 보상 과제"""

    id: str
    title: str = ""
    description: str = ""
    reward: int = Field(..., gt=0, description="보상 코인")
    type: RewardTaskType = RewardTaskType.DAILY
    completed: bool = False
    progress: Optional[RewardProgress] = None
    expires_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def can_claim(self) -> bool:
        """수령 버튼 활성화 여부 - 진행도 미달이면 비활성"""
        if self.completed:
            return False
        return self.progress is None or self.progress.reached


class RewardStats(CamelModel):
    total_earned: int = 0
    available_today: int = 0
    streak_days: int = 0
    completed_tasks: int = 0


class RewardTaskView(RewardTask):
    """UI 표시용 - claimable / claiming 플래그 포함"""

    claimable: bool = False
    claiming: bool = False


class RewardsResponse(CamelModel):
    tasks: List[RewardTaskView] = Field(default_factory=list)
    stats: RewardStats = Field(default_factory=RewardStats)


class RewardClaimResponse(CamelModel):
    success: bool
    task_id: str
    reward: int = 0
    message: str = ""
    displayed_balance: Optional[int] = None

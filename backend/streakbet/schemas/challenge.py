"""Схемы испытаний, общие для пользовательских, админских и вебхук-роутов."""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from streakbet.models.challenge import Challenge
from streakbet.services.reward_ledger import level_states


class ChallengeOut(BaseModel):
    id: int
    user_id: int
    tier: int
    difficulty: str
    min_odds: float
    cost: float
    reset_fee: float
    status: str
    current_level: int
    current_streak: int
    level1_completed: bool
    level2_completed: bool
    level3_completed: bool
    level4_completed: bool
    total_rewards_earned: float
    total_pending_amount: float
    purchased_at: datetime
    expires_at: datetime
    expired_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    reset_from_id: Optional[int]

    model_config = {"from_attributes": True}


class LevelStateOut(BaseModel):
    level: int
    name: str
    streak_required: int
    reward: float
    state: str  # locked | unlocked | claimed | forfeited
    reward_id: Optional[int] = None

    model_config = {"from_attributes": True}


class ChallengeWithLevelsOut(ChallengeOut):
    days_remaining: int
    levels: list[LevelStateOut]

    @classmethod
    def build(cls, challenge: Challenge, days_remaining: int) -> "ChallengeWithLevelsOut":
        """challenge.rewards должен быть загружен."""
        base = ChallengeOut.model_validate(challenge).model_dump()
        return cls(
            **base,
            days_remaining=days_remaining,
            levels=[LevelStateOut.model_validate(s) for s in level_states(challenge)],
        )

"""
StreakEngine — чистая функция перехода состояния испытания при расчёте ставки.

    apply(state, bet) -> Transition(state, unlocked)

Без БД и без часов: координатор расчёта загружает испытание, строит из него
ChallengeState, вызывает apply и сам записывает результат.

Правила:
  - ставка с коэффициентом ниже min_odds не учитывается вовсе (ни +1, ни сброс);
  - won  → серия +1, затем проверяются ВСЕ незакрытые уровни по возрастанию;
  - lost → серия = 0, закрытые уровни и суммы наград не откатываются;
  - push → без изменений.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from streakbet.models.bet import BetResult
from streakbet.models.challenge import Difficulty
from streakbet.services import catalog

if TYPE_CHECKING:
    from streakbet.models.challenge import Challenge


@dataclass(frozen=True)
class ChallengeState:
    tier: int
    difficulty: Difficulty
    min_odds: Decimal
    current_level: int = 1
    current_streak: int = 0
    completed_levels: frozenset[int] = frozenset()
    total_rewards_earned: Decimal = Decimal("0")
    total_pending_amount: Decimal = Decimal("0")

    @classmethod
    def from_challenge(
        cls, challenge: "Challenge", min_odds: Optional[Decimal] = None
    ) -> "ChallengeState":
        """min_odds — снимок из привязки ставки; по умолчанию снимок испытания."""
        return cls(
            tier=challenge.tier,
            difficulty=Difficulty(challenge.difficulty),
            min_odds=Decimal(min_odds if min_odds is not None else challenge.min_odds),
            current_level=challenge.current_level,
            current_streak=challenge.current_streak,
            completed_levels=challenge.completed_levels(),
            total_rewards_earned=Decimal(challenge.total_rewards_earned),
            total_pending_amount=Decimal(challenge.total_pending_amount),
        )

    @property
    def all_levels_completed(self) -> bool:
        return self.completed_levels.issuperset(catalog.LEVELS)

    def write_to(self, challenge: "Challenge") -> None:
        """Переносит прогресс обратно в ORM-объект. Флаги уровней только взводятся."""
        challenge.current_level = self.current_level
        challenge.current_streak = self.current_streak
        for level in self.completed_levels:
            setattr(challenge, f"level{level}_completed", True)
        challenge.total_rewards_earned = self.total_rewards_earned
        challenge.total_pending_amount = self.total_pending_amount


@dataclass(frozen=True)
class SettledBet:
    odds_decimal: Decimal
    result: BetResult


@dataclass(frozen=True)
class UnlockedReward:
    level: int
    amount: Decimal


@dataclass(frozen=True)
class Transition:
    state: ChallengeState
    unlocked: tuple[UnlockedReward, ...] = ()
    counted: bool = True  # False: ставка проигнорирована (ниже min_odds или push)

    @property
    def level_completed(self) -> Optional[int]:
        """Старший уровень, открытый этим переходом."""
        return max((u.level for u in self.unlocked), default=None)


def qualifies(state: ChallengeState, bet: SettledBet) -> bool:
    return Decimal(bet.odds_decimal) >= state.min_odds


def apply(state: ChallengeState, bet: SettledBet) -> Transition:
    result = BetResult(bet.result)
    if result == BetResult.pending:
        raise ValueError("Pending bets cannot be applied to a challenge")

    if not qualifies(state, bet):
        return Transition(state=state, counted=False)

    if result == BetResult.push:
        return Transition(state=state, counted=False)

    if result == BetResult.lost:
        return Transition(state=replace(state, current_streak=0))

    # won
    streak = state.current_streak + 1
    completed = set(state.completed_levels)
    unlocked: list[UnlockedReward] = []
    for level in catalog.LEVELS:
        if level in completed:
            continue
        if streak >= catalog.threshold_for(state.difficulty, level):
            completed.add(level)
            unlocked.append(
                UnlockedReward(level=level, amount=catalog.reward_for(state.tier, state.difficulty, level))
            )

    earned = sum((u.amount for u in unlocked), Decimal("0"))
    current_level = state.current_level
    if completed:
        current_level = max(current_level, min(max(completed) + 1, len(catalog.LEVELS)))

    new_state = replace(
        state,
        current_streak=streak,
        current_level=current_level,
        completed_levels=frozenset(completed),
        total_rewards_earned=state.total_rewards_earned + earned,
        total_pending_amount=state.total_pending_amount + earned,
    )
    return Transition(state=new_state, unlocked=tuple(unlocked))

"""
Каталог испытаний: размеры счетов, цены, таблицы наград и лестницы серий.

Таблицы фиксируются при определении каталога. Открытое испытание хранит
снимок min_odds, поэтому правка лестницы не меняет уже купленные испытания.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Optional

from streakbet.models.challenge import Difficulty

LEVELS = (1, 2, 3, 4)
LEVEL_NAMES = {1: "Bronze", 2: "Silver", 3: "Gold", 4: "Diamond"}


@dataclass(frozen=True)
class DifficultyConfig:
    name: str
    min_odds: Decimal
    thresholds: tuple[int, int, int, int]  # серия для уровней 1..4


@dataclass(frozen=True)
class TierConfig:
    size: int
    cost: Decimal
    label: str
    rewards: dict[Difficulty, tuple[Decimal, Decimal, Decimal, Decimal]]


def _d(*values: int) -> tuple[Decimal, ...]:
    return tuple(Decimal(v) for v in values)


DIFFICULTIES: dict[Difficulty, DifficultyConfig] = {
    Difficulty.beginner: DifficultyConfig(
        name="Beginner", min_odds=Decimal("1.5"), thresholds=(3, 6, 10, 15),
    ),
    Difficulty.pro: DifficultyConfig(
        name="Pro", min_odds=Decimal("2.0"), thresholds=(2, 4, 6, 9),
    ),
}

TIERS: dict[int, TierConfig] = {
    t.size: t
    for t in (
        TierConfig(1000, Decimal("20"), "€1K", {
            Difficulty.beginner: _d(3, 100, 500, 1000),
            Difficulty.pro: _d(3, 120, 550, 1000),
        }),
        TierConfig(5000, Decimal("99"), "€5K", {
            Difficulty.beginner: _d(20, 500, 2000, 5000),
            Difficulty.pro: _d(20, 600, 2200, 5000),
        }),
        TierConfig(10000, Decimal("199"), "€10K", {
            Difficulty.beginner: _d(60, 1000, 4500, 10000),
            Difficulty.pro: _d(60, 1200, 4950, 10000),
        }),
        TierConfig(25000, Decimal("399"), "€25K", {
            Difficulty.beginner: _d(100, 2000, 10000, 25000),
            Difficulty.pro: _d(100, 2400, 11000, 25000),
        }),
        TierConfig(50000, Decimal("699"), "€50K", {
            Difficulty.beginner: _d(150, 3500, 20000, 50000),
            Difficulty.pro: _d(150, 4200, 22000, 50000),
        }),
        TierConfig(100000, Decimal("999"), "€100K", {
            Difficulty.beginner: _d(250, 5000, 30000, 100000),
            Difficulty.pro: _d(250, 6000, 33000, 100000),
        }),
    )
}


class CatalogError(ValueError):
    pass


def get_tier(size: int) -> TierConfig:
    tier = TIERS.get(size)
    if tier is None:
        raise CatalogError(f"Invalid tier size: {size}. Allowed: {sorted(TIERS)}")
    return tier


def get_difficulty(difficulty: Difficulty | str) -> DifficultyConfig:
    try:
        return DIFFICULTIES[Difficulty(difficulty)]
    except ValueError:
        raise CatalogError(f"Invalid difficulty: {difficulty}") from None


def min_odds_for(difficulty: Difficulty | str) -> Decimal:
    return get_difficulty(difficulty).min_odds


def threshold_for(difficulty: Difficulty | str, level: int) -> int:
    if level not in LEVELS:
        raise CatalogError(f"Invalid level: {level}")
    return get_difficulty(difficulty).thresholds[level - 1]


def reward_for(tier_size: int, difficulty: Difficulty | str, level: int) -> Decimal:
    if level not in LEVELS:
        raise CatalogError(f"Invalid level: {level}")
    return get_tier(tier_size).rewards[Difficulty(difficulty)][level - 1]


def total_rewards_for(tier_size: int, difficulty: Difficulty | str) -> Decimal:
    return sum(get_tier(tier_size).rewards[Difficulty(difficulty)], Decimal("0"))


def reset_fee_for(cost: Decimal, pct: Decimal = Decimal("50")) -> Decimal:
    """Плата за сброс — процент от цены, округлённый вниз до целого евро."""
    return (cost * pct / 100).quantize(Decimal("1"), rounding=ROUND_DOWN)


def next_level_target(streak: int, difficulty: Difficulty | str) -> Optional[tuple[int, int]]:
    """(уровень, требуемая серия) для ближайшего недостигнутого порога или None."""
    for level, required in zip(LEVELS, get_difficulty(difficulty).thresholds):
        if streak < required:
            return level, required
    return None


def catalog_snapshot() -> list[dict]:
    """Каталог в виде, пригодном для API."""
    items = []
    for tier in TIERS.values():
        for difficulty, cfg in DIFFICULTIES.items():
            items.append({
                "tier": tier.size,
                "label": tier.label,
                "cost": tier.cost,
                "reset_fee": reset_fee_for(tier.cost),
                "difficulty": difficulty.value,
                "min_odds": cfg.min_odds,
                "levels": [
                    {
                        "level": level,
                        "name": LEVEL_NAMES[level],
                        "streak_required": cfg.thresholds[level - 1],
                        "reward": tier.rewards[difficulty][level - 1],
                    }
                    for level in LEVELS
                ],
            })
    return items

from functools import cache
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from gacha_engine.core.config import settings
from gacha_engine.core.enums import Currency, PullType, Rarity
from gacha_engine.core.exceptions import ConfigurationError


class PullTypeConfig(BaseModel):
    """Cost, roll count and rate modifiers of one pull type."""

    model_config = ConfigDict(frozen=True)

    roll_count: int = Field(ge=1)
    cost: int = Field(default=0, ge=0)
    currency: Currency = Currency.SOFT
    is_free: bool = False
    rate_multipliers: dict[Rarity, float] = Field(default_factory=dict)
    """Per-tier multipliers applied after pity"""
    non_lowest_multiplier: float = Field(default=1.0, ge=0.0)
    """Multiplier applied to every tier except the lowest one"""
    experience_multiplier: float = Field(default=1.0, ge=0.0)


class CompensationConfig(BaseModel):
    """Player-history compensation knobs."""

    model_config = ConfigDict(frozen=True)

    completion_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    completion_bonus: float = Field(default=0.02, ge=0.0)
    bad_luck_window: int = Field(default=10, ge=1)
    """Number of trailing rolled items used for the bad luck average"""
    bad_luck_value_threshold: float = Field(default=15.0, ge=0.0)
    bad_luck_bonus: float = Field(default=0.03, ge=0.0)
    max_total_bonus: float = Field(default=0.1, ge=0.0)


def default_pull_types() -> dict[PullType, PullTypeConfig]:
    return {
        PullType.SINGLE: PullTypeConfig(roll_count=1, cost=100),
        PullType.MULTI_10: PullTypeConfig(roll_count=10, cost=900, experience_multiplier=1.5),
        PullType.PREMIUM: PullTypeConfig(
            roll_count=1,
            cost=200,
            currency=Currency.PREMIUM,
            rate_multipliers={Rarity.EPIC: 1.5},
            experience_multiplier=2.0,
        ),
        PullType.FREE_DAILY: PullTypeConfig(
            roll_count=1, is_free=True, non_lowest_multiplier=0.5, experience_multiplier=0.5
        ),
        PullType.SEASONAL: PullTypeConfig(
            roll_count=1, cost=150, currency=Currency.PREMIUM, rate_multipliers={Rarity.LEGENDARY: 2.0}
        ),
    }


class GachaConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    pull_types: dict[PullType, PullTypeConfig] = Field(default_factory=default_pull_types)
    daily_free_pulls: int = Field(default=1, ge=0)
    max_daily_rolls: int = Field(default=100, ge=1)
    """Maximum rolled items per player per calendar day, across all pull types"""
    pity_increase_rate: float = Field(default=0.02, ge=0.0)
    soft_pity_ratio: float = Field(default=0.75, ge=0.0, lt=1.0)
    """Soft pity start as a fraction of the hard threshold, for tiers that don't set one"""
    new_item_experience: int = Field(default=10, ge=0)
    history_limit: int = Field(default=1000, ge=1)
    compensation: CompensationConfig = Field(default_factory=CompensationConfig)

    def get_pull_type(self, pull_type: PullType) -> PullTypeConfig | None:
        return self.pull_types.get(pull_type)

    @classmethod
    def from_file(cls, path: str | Path) -> "GachaConfig":
        try:
            return cls.model_validate_json(Path(path).read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            raise ConfigurationError(f"Invalid gacha config at {path}: {e}") from e


@cache
def get_gacha_config() -> GachaConfig:
    if settings.gacha_config_path:
        logger.info(f"Loading gacha config from {settings.gacha_config_path}")
        return GachaConfig.from_file(settings.gacha_config_path)
    return GachaConfig()

import datetime

from pydantic import BaseModel, ConfigDict, Field

from gacha_engine.core.enums import Currency, DenialReason, PullType, Rarity
from gacha_engine.utils.misc import get_utc_now


class PullRequest(BaseModel):
    """Request to perform a gacha pull."""

    player_id: int = Field(description="ID of the pulling player")
    pull_type: PullType = Field(default=PullType.SINGLE, description="Configured pull variant")
    submitted_at: datetime.datetime = Field(default_factory=get_utc_now)


class PullApproval(BaseModel):
    """Terms of a pull the eligibility gate let through."""

    model_config = ConfigDict(frozen=True)

    pull_type: PullType
    roll_count: int
    cost: int
    currency: Currency
    day_key: str


class EligibilityDecision(BaseModel):
    """Outcome of the eligibility gate for one pull request."""

    model_config = ConfigDict(frozen=True)

    approved: bool
    reason: DenialReason | None = None
    pull_type: PullType | None = None
    roll_count: int = 0
    cost: int = 0
    currency: Currency = Currency.SOFT
    day_key: str | None = None

    @classmethod
    def approve(cls, approval: PullApproval) -> "EligibilityDecision":
        return cls(approved=True, **approval.model_dump())

    @classmethod
    def deny(cls, reason: DenialReason, *, pull_type: PullType | None = None) -> "EligibilityDecision":
        return cls(approved=False, reason=reason, pull_type=pull_type)


class PullGrant(BaseModel):
    """Proof that a pull passed eligibility and was charged."""

    model_config = ConfigDict(frozen=True)

    pull_id: str
    player_id: int
    pull_type: PullType
    roll_count: int
    cost: int
    currency: Currency
    day_key: str
    granted_at: datetime.datetime


class DrawnItem(BaseModel):
    """One rolled item of a pull."""

    model_config = ConfigDict(frozen=True)

    item_id: str
    name: str
    tier: Rarity
    base_value: int
    is_new: bool
    was_guaranteed: bool


class PullResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    pull_id: str
    player_id: int
    pull_type: PullType
    items: list[DrawnItem]
    pity_after: dict[Rarity, int]
    """Per-tier pity counters after the pull"""
    total_value: int
    experience_gained: int
    guarantee_fired: bool
    cost: int
    currency: Currency
    timestamp: datetime.datetime


class GachaStats(BaseModel):
    """Aggregated pull history of a player."""

    total_pulls: int
    total_items: int
    items_per_rarity: dict[Rarity, int]
    favorite_category: str | None
    last_pull_at: datetime.datetime | None

from enum import StrEnum


class Rarity(StrEnum):
    COMMON = "common"
    UNCOMMON = "uncommon"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"

    @property
    def rank(self) -> int:
        """Position in the rarity ladder, 0 being the most common."""
        return list(Rarity).index(self)


class PullType(StrEnum):
    SINGLE = "single"
    MULTI_10 = "multi_10"
    PREMIUM = "premium"
    FREE_DAILY = "free_daily"
    SEASONAL = "seasonal"


class Currency(StrEnum):
    SOFT = "soft"
    PREMIUM = "premium"


class DenialReason(StrEnum):
    UNKNOWN_PULL_TYPE = "unknown_pull_type"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    DAILY_LIMIT_REACHED = "daily_limit_reached"
    FREE_PULL_EXHAUSTED = "free_pull_exhausted"


class EventType(StrEnum):
    GACHA_PULL = "gacha_pull"
    GACHA_GUARANTEE = "gacha_guarantee"
    GACHA_REFUND = "gacha_refund"
    GACHA_REFUND_PENDING = "gacha_refund_pending"

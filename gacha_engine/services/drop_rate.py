from collections.abc import Mapping, Sequence
from typing import Annotated

from fastapi import Depends
from pydantic import BaseModel, ConfigDict

from gacha_engine.core.enums import DenialReason, PullType, Rarity
from gacha_engine.core.exceptions import ConfigurationError, IneligibleError
from gacha_engine.core.gacha import GachaConfig, PullTypeConfig, get_gacha_config
from gacha_engine.schemas.catalog import RarityTier
from gacha_engine.services.catalog import RarityCatalog, get_catalog
from gacha_engine.services.collection import CollectionLedger
from gacha_engine.services.pity import PityTracker, guaranteed_tier
from gacha_engine.services.pull_history import PullHistoryService


class RateContext(BaseModel):
    """Per-pull inputs of the rate computation that don't change between rolls."""

    model_config = ConfigDict(frozen=True)

    pull_type: PullType
    multipliers: dict[Rarity, float]
    bonuses: dict[Rarity, float]


class DropRateCalculator:
    """Derive the normalized tier distribution of a roll.

    The computation runs in a fixed order: base rates, soft pity ramp, pull type
    multipliers, player history compensation, then normalization. Multipliers and
    compensation are resolved once per pull into a `RateContext`; only the pity
    counters change between the rolls of a multi-pull.
    """

    def __init__(
        self,
        catalog: Annotated[RarityCatalog, Depends(get_catalog)],
        config: Annotated[GachaConfig, Depends(get_gacha_config)],
        pity: Annotated[PityTracker, Depends()],
        ledger: Annotated[CollectionLedger, Depends()],
        history: Annotated[PullHistoryService, Depends()],
    ) -> None:
        self.catalog = catalog
        self.config = config
        self.pity = pity
        self.ledger = ledger
        self.history = history

    async def compute_distribution(
        self, player_id: int, pull_type: PullType | str
    ) -> dict[Rarity, float]:
        """Distribution of the player's next roll for a pull type.

        Raises:
            IneligibleError: If the pull type is not configured.
            ConfigurationError: If the rates sum to zero.
        """
        resolved = self._resolve_pull_type(pull_type)
        counters = await self.pity.get_pity_status(player_id)
        collection = await self.ledger.get_player_collection(player_id)
        trailing = await self.history.trailing_values(
            player_id, self.config.compensation.bad_luck_window
        )
        context = self.build_context(resolved, collection.completion_by_tier, trailing)
        return self.distribution(counters, context)

    def _resolve_pull_type(self, pull_type: PullType | str) -> PullType:
        try:
            resolved = PullType(pull_type)
        except ValueError:
            raise IneligibleError(DenialReason.UNKNOWN_PULL_TYPE) from None
        if self.config.get_pull_type(resolved) is None:
            raise IneligibleError(DenialReason.UNKNOWN_PULL_TYPE)
        return resolved

    def build_context(
        self,
        pull_type: PullType,
        completion_by_tier: Mapping[Rarity, float],
        trailing_values: Sequence[int],
    ) -> RateContext:
        pull_config = self.config.get_pull_type(pull_type)
        if pull_config is None:
            raise IneligibleError(DenialReason.UNKNOWN_PULL_TYPE)

        return RateContext(
            pull_type=pull_type,
            multipliers=self._pull_type_multipliers(pull_config),
            bonuses=self._compensation_bonuses(completion_by_tier, trailing_values),
        )

    def distribution(
        self, counters: Mapping[Rarity, int], context: RateContext
    ) -> dict[Rarity, float]:
        """Normalized distribution for one roll.

        A tier at or over its hard pity threshold takes the whole distribution, the
        highest such tier winning.
        """
        forced = guaranteed_tier(self.catalog, counters)
        if forced is not None:
            return {tier.id: 1.0 if tier.id == forced else 0.0 for tier in self.catalog.tiers}

        rates = self._base_rates()
        rates = self._apply_pity(rates, counters)
        rates = self._apply_multipliers(rates, context.multipliers)
        rates = self._apply_bonuses(rates, context.bonuses)
        return self._normalize(rates)

    def _base_rates(self) -> dict[Rarity, float]:
        return {tier.id: tier.base_drop_rate for tier in self.catalog.tiers}

    def soft_pity_start(self, tier: RarityTier) -> int:
        if tier.soft_pity_start is not None:
            return tier.soft_pity_start
        return int(tier.pity_threshold * self.config.soft_pity_ratio)

    def _apply_pity(
        self, rates: dict[Rarity, float], counters: Mapping[Rarity, int]
    ) -> dict[Rarity, float]:
        adjusted = dict(rates)
        for tier in self.catalog.pity_tiers():
            counter = counters.get(tier.id, 0)
            soft_start = self.soft_pity_start(tier)
            if soft_start <= counter < tier.pity_threshold:
                progress = (counter - soft_start) / (tier.pity_threshold - soft_start)
                adjusted[tier.id] += self.config.pity_increase_rate * progress
        return adjusted

    def _pull_type_multipliers(self, pull_config: PullTypeConfig) -> dict[Rarity, float]:
        lowest = self.catalog.lowest_tier
        multipliers: dict[Rarity, float] = {}
        for rarity in self.catalog.rarities:
            multiplier = pull_config.rate_multipliers.get(rarity, 1.0)
            if rarity != lowest:
                multiplier *= pull_config.non_lowest_multiplier
            multipliers[rarity] = multiplier
        return multipliers

    @staticmethod
    def _apply_multipliers(
        rates: dict[Rarity, float], multipliers: Mapping[Rarity, float]
    ) -> dict[Rarity, float]:
        return {rarity: rate * multipliers.get(rarity, 1.0) for rarity, rate in rates.items()}

    def _compensation_bonuses(
        self, completion_by_tier: Mapping[Rarity, float], trailing_values: Sequence[int]
    ) -> dict[Rarity, float]:
        comp = self.config.compensation
        lowest = self.catalog.lowest_tier
        drawable = [tier.id for tier in self.catalog.tiers if tier.base_drop_rate > 0 and tier.items]
        bonuses = dict.fromkeys(drawable, 0.0)

        # Duplicate fatigue: nudge the tiers the player hasn't mostly completed yet
        if any(completion > comp.completion_threshold for completion in completion_by_tier.values()):
            for rarity in drawable:
                if completion_by_tier.get(rarity, 0.0) <= comp.completion_threshold:
                    bonuses[rarity] += comp.completion_bonus

        # Bad luck: only once a full window of rolls is known
        if len(trailing_values) >= comp.bad_luck_window:
            average = sum(trailing_values) / len(trailing_values)
            if average < comp.bad_luck_value_threshold:
                for rarity in drawable:
                    if rarity != lowest:
                        bonuses[rarity] += comp.bad_luck_bonus

        total = sum(bonuses.values())
        if total > comp.max_total_bonus:
            scale = comp.max_total_bonus / total
            bonuses = {rarity: bonus * scale for rarity, bonus in bonuses.items()}

        return {rarity: bonus for rarity, bonus in bonuses.items() if bonus > 0}

    @staticmethod
    def _apply_bonuses(
        rates: dict[Rarity, float], bonuses: Mapping[Rarity, float]
    ) -> dict[Rarity, float]:
        return {rarity: rate + bonuses.get(rarity, 0.0) for rarity, rate in rates.items()}

    @staticmethod
    def _normalize(rates: dict[Rarity, float]) -> dict[Rarity, float]:
        total = sum(rates.values())
        if total <= 0:
            raise ConfigurationError("Drop rates sum to zero, cannot normalize")
        return {rarity: rate / total for rarity, rate in rates.items()}

import secrets
from collections.abc import Mapping
from typing import Annotated, Protocol

from fastapi import Depends

from gacha_engine.core.enums import Rarity
from gacha_engine.core.exceptions import ConfigurationError
from gacha_engine.schemas.catalog import GachaItem
from gacha_engine.services.catalog import RarityCatalog, get_catalog


class RandomSource(Protocol):
    def random(self) -> float:
        """Uniform float in [0.0, 1.0)."""
        ...


class SecureRandomSource:
    """Random source backed by the operating system CSPRNG."""

    def __init__(self) -> None:
        self._rng = secrets.SystemRandom()

    def random(self) -> float:
        return self._rng.random()


secure_random = SecureRandomSource()


def get_random_source() -> RandomSource:
    return secure_random


class WeightedSelector:
    def __init__(
        self,
        catalog: Annotated[RarityCatalog, Depends(get_catalog)],
        rng: Annotated[RandomSource, Depends(get_random_source)],
    ) -> None:
        self.catalog = catalog
        self.rng = rng

    def select_tier(self, distribution: Mapping[Rarity, float]) -> Rarity:
        """Pick a tier by inverse-CDF sampling over a normalized distribution.

        Tiers are walked in ascending rarity, subtracting each probability from a
        single uniform draw until it is no longer positive.
        """
        u = self.rng.random()
        selected: Rarity | None = None

        for rarity in sorted(distribution, key=lambda r: r.rank):
            probability = distribution[rarity]
            if probability <= 0:
                continue
            selected = rarity
            u -= probability
            if u <= 0:
                return rarity

        # Floating point leftovers land on the last drawable tier
        if selected is None:
            raise ConfigurationError("Distribution has no drawable tier")
        return selected

    def select_item(self, rarity: Rarity) -> GachaItem:
        """Pick an item uniformly from a tier's pool."""
        items = self.catalog.items_in(rarity)
        if not items:
            raise ConfigurationError(f"Tier {rarity} has no items")

        index = min(int(self.rng.random() * len(items)), len(items) - 1)
        return items[index]

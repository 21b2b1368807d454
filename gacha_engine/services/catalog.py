from collections import Counter
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import ValidationError

from gacha_engine.core.config import settings
from gacha_engine.core.enums import Rarity
from gacha_engine.core.exceptions import ConfigurationError
from gacha_engine.schemas.catalog import CatalogDocument, GachaItem, RarityTier

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent.parent / "data" / "catalog.json"


class RarityCatalog:
    """Read-only snapshot of the rarity tiers and their item pools.

    Tiers are kept in ascending rarity order, which is the fixed walk order of
    the weighted selector.
    """

    def __init__(self, tiers: Iterable[RarityTier]) -> None:
        ordered = sorted(tiers, key=lambda tier: tier.id.rank)
        self._tiers: dict[Rarity, RarityTier] = {}
        self._items: dict[str, GachaItem] = {}

        for tier in ordered:
            if tier.id in self._tiers:
                raise ConfigurationError(f"Tier {tier.id} is defined more than once")
            self._tiers[tier.id] = tier
            for item in tier.items:
                if item.id in self._items:
                    raise ConfigurationError(f"Item {item.id} is defined more than once")
                self._items[item.id] = item

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RarityCatalog":
        try:
            document = CatalogDocument.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid catalog: {e}") from e
        return cls(document.tiers)

    @classmethod
    def from_file(cls, path: str | Path) -> "RarityCatalog":
        try:
            document = CatalogDocument.model_validate_json(Path(path).read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            raise ConfigurationError(f"Invalid catalog at {path}: {e}") from e
        return cls(document.tiers)

    @property
    def tiers(self) -> tuple[RarityTier, ...]:
        return tuple(self._tiers.values())

    @property
    def rarities(self) -> tuple[Rarity, ...]:
        return tuple(self._tiers)

    @property
    def lowest_tier(self) -> Rarity:
        return next(iter(self._tiers))

    @property
    def total_items(self) -> int:
        return len(self._items)

    def get_tier(self, rarity: Rarity) -> RarityTier | None:
        return self._tiers.get(rarity)

    def get_item(self, item_id: str) -> GachaItem | None:
        return self._items.get(item_id)

    def items_in(self, rarity: Rarity) -> tuple[GachaItem, ...]:
        tier = self._tiers.get(rarity)
        return tier.items if tier else ()

    def pity_tiers(self) -> tuple[RarityTier, ...]:
        return tuple(tier for tier in self._tiers.values() if tier.has_pity)

    def category_sizes(self) -> dict[str, int]:
        """Number of items per category, for items that declare one."""
        return dict(Counter(item.category for item in self._items.values() if item.category))

    def validate(self) -> None:
        """Reject catalogs that could not honour their configured drop rates.

        Raises:
            ConfigurationError: On an empty catalog, a zero total base rate, or a
                tier that can be drawn or forced but has no items.
        """
        if not self._tiers:
            raise ConfigurationError("Catalog has no rarity tiers")

        if sum(tier.base_drop_rate for tier in self._tiers.values()) <= 0:
            raise ConfigurationError("Catalog base drop rates sum to zero")

        for tier in self._tiers.values():
            if (tier.base_drop_rate > 0 or tier.has_pity) and not tier.items:
                raise ConfigurationError(f"Tier {tier.id} has no items")


class CatalogStore:
    """Holds the current catalog snapshot and swaps it on refresh."""

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path else DEFAULT_CATALOG_PATH
        self._current: RarityCatalog | None = None

    @property
    def current(self) -> RarityCatalog:
        if self._current is None:
            return self.refresh()
        return self._current

    def refresh(self) -> RarityCatalog:
        catalog = RarityCatalog.from_file(self.path)
        catalog.validate()
        self._current = catalog
        logger.info(
            f"Loaded catalog from {self.path}: {len(catalog.tiers)} tiers, {catalog.total_items} items"
        )
        return catalog


catalog_store = CatalogStore(settings.catalog_path)


def get_catalog() -> RarityCatalog:
    return catalog_store.current


def get_catalog_store() -> CatalogStore:
    return catalog_store

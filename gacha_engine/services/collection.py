from collections import Counter
from collections.abc import Mapping, Sequence
from typing import Annotated

from fastapi import Depends
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from gacha_engine.core.db import get_db
from gacha_engine.core.enums import Rarity
from gacha_engine.models.collection_entry import CollectionEntry
from gacha_engine.schemas.catalog import GachaItem
from gacha_engine.schemas.collection import CollectionEntryView, CollectionSummary
from gacha_engine.services.catalog import RarityCatalog, get_catalog
from gacha_engine.utils.misc import Clock, get_clock


class CollectionLedger:
    def __init__(
        self,
        db: Annotated[AsyncSession, Depends(get_db)],
        catalog: Annotated[RarityCatalog, Depends(get_catalog)],
        clock: Annotated[Clock, Depends(get_clock)],
    ) -> None:
        self.db = db
        self.catalog = catalog
        self.clock = clock

    async def load_entries(self, player_id: int) -> dict[str, CollectionEntry]:
        result = await self.db.exec(
            select(CollectionEntry).where(CollectionEntry.player_id == player_id)
        )
        return {entry.item_id: entry for entry in result.all()}

    def stage_items(
        self, player_id: int, items: Sequence[GachaItem], entries: dict[str, CollectionEntry]
    ) -> CollectionSummary:
        """Add drawn items to already loaded entries and stage the changes.

        Stackable repeats raise the quantity, non-stackable repeats are counted as
        duplicates. Entries are never removed or decreased.
        """
        now = self.clock.now()
        for item in items:
            entry = entries.get(item.id)
            if entry is None:
                entry = CollectionEntry(
                    player_id=player_id,
                    item_id=item.id,
                    quantity=1,
                    first_obtained_at=now,
                    is_new=True,
                )
                entries[item.id] = entry
            elif item.stackable:
                entry.quantity += 1
            else:
                entry.duplicate_count += 1

            self.db.add(entry)

        return self.summarize(player_id, entries)

    async def record_items(self, player_id: int, items: Sequence[GachaItem]) -> CollectionSummary:
        entries = await self.load_entries(player_id)
        return self.stage_items(player_id, items, entries)

    async def get_player_collection(self, player_id: int) -> CollectionSummary:
        return self.summarize(player_id, await self.load_entries(player_id))

    async def acknowledge(self, player_id: int, item_ids: Sequence[str] | None = None) -> int:
        """Clear the "is new" flag of the given items (all when omitted).

        Returns:
            The number of entries that were flagged as new.
        """
        stmt = select(CollectionEntry).where(
            CollectionEntry.player_id == player_id, col(CollectionEntry.is_new).is_(True)
        )
        if item_ids is not None:
            stmt = stmt.where(col(CollectionEntry.item_id).in_(item_ids))

        result = await self.db.exec(stmt)
        entries = result.all()
        for entry in entries:
            entry.is_new = False
            self.db.add(entry)

        await self.db.commit()
        return len(entries)

    def completion_by_tier(self, entries: Mapping[str, CollectionEntry]) -> dict[Rarity, float]:
        owned = Counter(
            item.tier for item_id in entries if (item := self.catalog.get_item(item_id)) is not None
        )
        return {
            tier.id: owned[tier.id] / len(tier.items) if tier.items else 0.0
            for tier in self.catalog.tiers
        }

    def summarize(self, player_id: int, entries: Mapping[str, CollectionEntry]) -> CollectionSummary:
        catalog_items = [
            item for item_id in entries if (item := self.catalog.get_item(item_id)) is not None
        ]
        owned_categories = Counter(item.category for item in catalog_items if item.category)
        total_items = self.catalog.total_items

        views: list[CollectionEntryView] = []
        for entry in sorted(entries.values(), key=lambda e: (e.first_obtained_at, e.item_id)):
            item = self.catalog.get_item(entry.item_id)
            views.append(
                CollectionEntryView(
                    item_id=entry.item_id,
                    name=item.name if item else None,
                    tier=item.tier if item else None,
                    quantity=entry.quantity,
                    duplicate_count=entry.duplicate_count,
                    first_obtained_at=entry.first_obtained_at,
                    is_new=entry.is_new,
                )
            )

        return CollectionSummary(
            player_id=player_id,
            entries=views,
            distinct_items=len(catalog_items),
            total_items=total_items,
            completion=len(catalog_items) / total_items if total_items else 0.0,
            completion_by_tier=self.completion_by_tier(entries),
            completion_by_category={
                category: owned_categories[category] / size
                for category, size in self.catalog.category_sizes().items()
            },
            new_items=sum(1 for entry in entries.values() if entry.is_new),
        )

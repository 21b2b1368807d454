import datetime
from collections import Counter
from collections.abc import Sequence
from typing import Annotated
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import Depends
from loguru import logger
from pydantic import BaseModel
from sqlmodel import col, func, select
from sqlmodel.ext.asyncio.session import AsyncSession

from gacha_engine.core.db import get_db
from gacha_engine.core.enums import Rarity
from gacha_engine.core.gacha import GachaConfig, get_gacha_config
from gacha_engine.models.player import Player
from gacha_engine.models.pull_record import PullRecord
from gacha_engine.schemas.catalog import GachaItem
from gacha_engine.schemas.gacha import GachaStats, PullGrant
from gacha_engine.utils.misc import Clock, get_clock


class DailyUsage(BaseModel):
    rolls: int = 0
    free_pulls: int = 0


class PullHistoryService:
    def __init__(
        self,
        db: Annotated[AsyncSession, Depends(get_db)],
        config: Annotated[GachaConfig, Depends(get_gacha_config)],
        clock: Annotated[Clock, Depends(get_clock)],
    ) -> None:
        self.db = db
        self.config = config
        self.clock = clock

    async def get_timezone(self, player_id: int) -> ZoneInfo:
        result = await self.db.exec(select(Player.timezone).where(Player.id == player_id))
        name = result.first()
        if not name:
            return ZoneInfo("UTC")

        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Player {player_id} has an unknown time zone {name!r}, using UTC")
            return ZoneInfo("UTC")

    async def day_key(self, player_id: int, at: datetime.datetime | None = None) -> str:
        """Calendar day of `at` (default: now) in the player's time zone."""
        moment = at or self.clock.now()
        timezone = await self.get_timezone(player_id)
        return moment.astimezone(timezone).date().isoformat()

    async def daily_usage(self, player_id: int, day_key: str) -> DailyUsage:
        free_types = [
            pull_type for pull_type, cfg in self.config.pull_types.items() if cfg.is_free
        ]

        rolls_result = await self.db.exec(
            select(func.coalesce(func.sum(PullRecord.roll_count), 0)).where(
                PullRecord.player_id == player_id, PullRecord.day_key == day_key
            )
        )
        free_result = await self.db.exec(
            select(func.count(col(PullRecord.id))).where(
                PullRecord.player_id == player_id,
                PullRecord.day_key == day_key,
                col(PullRecord.pull_type).in_(free_types),
            )
        )
        return DailyUsage(rolls=rolls_result.one() or 0, free_pulls=free_result.one() or 0)

    async def _recent_records(
        self, player_id: int, limit: int | None = None, offset: int = 0
    ) -> Sequence[PullRecord]:
        stmt = (
            select(PullRecord)
            .where(PullRecord.player_id == player_id)
            .order_by(col(PullRecord.created_at).desc(), col(PullRecord.id).desc())
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)

        result = await self.db.exec(stmt)
        return result.all()

    async def trailing_values(self, player_id: int, window: int) -> list[int]:
        """Values of the player's last `window` rolled items, most recent first."""
        values: list[int] = []
        for record in await self._recent_records(player_id, window):
            values.extend(int(entry.get("value", 0)) for entry in reversed(record.items))
            if len(values) >= window:
                break
        return values[:window]

    async def stale_records(self, player_id: int) -> Sequence[PullRecord]:
        """Records that fall out of the retained history once one more pull is added."""
        return await self._recent_records(player_id, offset=self.config.history_limit - 1)

    def record(
        self, grant: PullGrant, items: Sequence[GachaItem], *, guarantee_fired: bool
    ) -> PullRecord:
        """Stage the history record of a granted pull."""
        record = PullRecord(
            pull_id=grant.pull_id,
            player_id=grant.player_id,
            pull_type=grant.pull_type,
            roll_count=len(items),
            items=[
                {
                    "item_id": item.id,
                    "tier": item.tier.value,
                    "value": item.base_value,
                    "category": item.category,
                }
                for item in items
            ],
            total_value=sum(item.base_value for item in items),
            guarantee_fired=guarantee_fired,
            cost=grant.cost,
            currency=grant.currency,
            day_key=grant.day_key,
            created_at=grant.granted_at,
        )
        self.db.add(record)
        return record

    async def get_player_stats(self, player_id: int) -> GachaStats:
        result = await self.db.exec(
            select(PullRecord)
            .where(PullRecord.player_id == player_id)
            .order_by(col(PullRecord.created_at), col(PullRecord.id))
        )
        records = result.all()

        per_rarity: dict[Rarity, int] = {}
        categories: Counter[str] = Counter()
        for record in records:
            for entry in record.items:
                rarity = Rarity(entry["tier"])
                per_rarity[rarity] = per_rarity.get(rarity, 0) + 1
                if entry.get("category"):
                    categories[entry["category"]] += 1

        favorite = categories.most_common(1)[0][0] if categories else None
        return GachaStats(
            total_pulls=len(records),
            total_items=sum(per_rarity.values()),
            items_per_rarity=per_rarity,
            favorite_category=favorite,
            last_pull_at=records[-1].created_at if records else None,
        )

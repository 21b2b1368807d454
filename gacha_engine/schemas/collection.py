import datetime

from pydantic import BaseModel, Field

from gacha_engine.core.enums import Rarity


class CollectionEntryView(BaseModel):
    item_id: str
    name: str | None
    tier: Rarity | None
    quantity: int
    duplicate_count: int
    first_obtained_at: datetime.datetime
    is_new: bool


class CollectionSummary(BaseModel):
    player_id: int
    entries: list[CollectionEntryView]
    distinct_items: int = Field(description="Distinct catalog items owned at least once")
    total_items: int = Field(description="Items in the current catalog")
    completion: float = Field(ge=0.0, le=1.0)
    completion_by_tier: dict[Rarity, float]
    completion_by_category: dict[str, float]
    new_items: int


class AcknowledgeRequest(BaseModel):
    item_ids: list[str] | None = Field(
        default=None, description="Items to mark as seen, all of them when omitted"
    )

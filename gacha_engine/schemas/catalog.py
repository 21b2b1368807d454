from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from gacha_engine.core.enums import Rarity


class GachaItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, max_length=100)
    name: str
    tier: Rarity
    stackable: bool = True
    base_value: int = Field(default=0, ge=0)
    """Value used for experience and point conversion"""
    category: str | None = None
    special_effect: dict[str, Any] | None = None


class RarityTier(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Rarity
    name: str
    base_drop_rate: float = Field(ge=0.0, le=1.0)
    pity_threshold: int = Field(default=0, ge=0)
    """Hard pity: roll count at which this tier is forced, 0 disables pity"""
    soft_pity_start: int | None = Field(default=None, ge=0)
    reset_on_rare_pull: bool = True
    items: tuple[GachaItem, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _inherit_item_tier(cls, data: Any) -> Any:
        # Items nested under a tier may omit their tier id
        if isinstance(data, dict) and data.get("items"):
            data = {
                **data,
                "items": [
                    {"tier": data.get("id"), **item} if isinstance(item, dict) else item
                    for item in data["items"]
                ],
            }
        return data

    @model_validator(mode="after")
    def _check_consistency(self) -> Self:
        for item in self.items:
            if item.tier != self.id:
                msg = f"Item {item.id} belongs to {item.tier}, not {self.id}"
                raise ValueError(msg)
        if self.soft_pity_start is not None and self.has_pity:
            if self.soft_pity_start >= self.pity_threshold:
                msg = f"Soft pity start of {self.id} must be below its hard threshold"
                raise ValueError(msg)
        return self

    @property
    def has_pity(self) -> bool:
        return self.pity_threshold > 0


class CatalogDocument(BaseModel):
    """On-disk shape of a catalog snapshot."""

    tiers: list[RarityTier]

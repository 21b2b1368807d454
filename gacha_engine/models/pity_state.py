import datetime

import sqlmodel

from gacha_engine.core.enums import Rarity

from ._base import BaseModel, UTCDateTime


class PityState(BaseModel, table=True):
    """Track a player's pity counter for one rarity tier."""

    __tablename__: str = "pity_states"
    __table_args__ = (
        sqlmodel.UniqueConstraint("player_id", "rarity", name="uq_pity_states_player_rarity"),
    )

    id: int = sqlmodel.Field(primary_key=True, index=True, default=None)
    player_id: int = sqlmodel.Field(index=True, sa_type=sqlmodel.BigInteger)
    rarity: Rarity
    counter: int = sqlmodel.Field(default=0, ge=0)
    """Number of rolls since this tier (or a higher one) was last obtained"""
    last_reset_at: datetime.datetime | None = sqlmodel.Field(
        default=None, nullable=True, sa_type=UTCDateTime
    )

import datetime

import sqlmodel

from ._base import BaseModel, UTCDateTime


class CollectionEntry(BaseModel, table=True):
    __tablename__: str = "collection_entries"
    __table_args__ = (
        sqlmodel.UniqueConstraint("player_id", "item_id", name="uq_collection_entries_player_item"),
    )

    id: int = sqlmodel.Field(primary_key=True, index=True, default=None)
    player_id: int = sqlmodel.Field(index=True, sa_type=sqlmodel.BigInteger)
    item_id: str = sqlmodel.Field(index=True, max_length=100)
    quantity: int = sqlmodel.Field(default=1, ge=1)
    duplicate_count: int = sqlmodel.Field(default=0, ge=0)
    """Copies of a non-stackable item drawn after the first one"""
    first_obtained_at: datetime.datetime = sqlmodel.Field(sa_type=UTCDateTime)
    is_new: bool = True

import sqlmodel

from gacha_engine.core.enums import Currency, PullType

from ._base import BaseModel


class PullRecord(BaseModel, table=True):
    """Log each gacha pull made by a player."""

    __tablename__: str = "gacha_pulls"

    id: int = sqlmodel.Field(primary_key=True, index=True, default=None)
    pull_id: str = sqlmodel.Field(index=True, unique=True, max_length=32)
    player_id: int = sqlmodel.Field(index=True, sa_type=sqlmodel.BigInteger)
    pull_type: PullType
    roll_count: int = sqlmodel.Field(ge=1)
    items: list[dict] = sqlmodel.Field(sa_column=sqlmodel.Column(sqlmodel.JSON))
    """One entry per roll: item_id, tier, value, category"""
    total_value: int = sqlmodel.Field(default=0, ge=0)
    guarantee_fired: bool = sqlmodel.Field(default=False)
    cost: int = sqlmodel.Field(default=0, ge=0)
    currency: Currency
    day_key: str = sqlmodel.Field(index=True, max_length=10)
    """Calendar day of the pull in the player's time zone (YYYY-MM-DD)"""

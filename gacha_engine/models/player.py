import sqlmodel
from pydantic import field_serializer

from ._base import BaseModel


class Player(BaseModel, table=True):
    __tablename__: str = "players"

    id: int = sqlmodel.Field(
        primary_key=True,
        index=True,
        sa_type=sqlmodel.BigInteger,
        sa_column_kwargs={"autoincrement": False},
    )
    name: str | None = sqlmodel.Field(default=None, nullable=True)
    timezone: str = sqlmodel.Field(default="UTC", max_length=64)
    """IANA time zone used to key the daily pull quotas"""

    @field_serializer("id")
    def serialize_id(self, value: int) -> str:
        """Serialize ID as string for JavaScript compatibility with large IDs."""
        return str(value)

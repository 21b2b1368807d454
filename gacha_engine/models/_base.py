import datetime

import sqlmodel
from sqlalchemy.engine import Dialect
from sqlalchemy.types import TypeDecorator

from gacha_engine.utils.misc import get_utc_now


class UTCDateTime(TypeDecorator[datetime.datetime]):
    """Timezone-aware datetime stored as UTC, on backends with or without tz support."""

    impl = sqlmodel.DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(
        self, value: datetime.datetime | None, dialect: Dialect
    ) -> datetime.datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.UTC)
        return value.astimezone(datetime.UTC)

    def process_result_value(
        self, value: datetime.datetime | None, dialect: Dialect
    ) -> datetime.datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=datetime.UTC)
        return value


class BaseModel(sqlmodel.SQLModel):
    created_at: datetime.datetime = sqlmodel.Field(
        default_factory=get_utc_now, sa_type=UTCDateTime, index=True
    )

from typing import Literal

from pydantic import BaseModel, Field

from gacha_engine.utils.misc import get_utc_iso_now


class APIResponse[T](BaseModel):
    """Envelope of every API response."""

    status: Literal["success", "error"] = "success"
    data: T | None = None
    message: str | None = None
    timestamp: str = Field(default_factory=get_utc_iso_now)

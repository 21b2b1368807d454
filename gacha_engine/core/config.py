from typing import Literal

from dotenv import load_dotenv
from pydantic_settings import BaseSettings


class Config(BaseSettings):
    db_url: str = "sqlite+aiosqlite:///./gacha.db"
    env: Literal["prod", "dev"] = "prod"
    log_level: str = "INFO"

    # Catalog snapshot and engine tuning, bundled defaults when unset
    catalog_path: str | None = None
    gacha_config_path: str | None = None

    # Remote wallet, the database wallet is used when no URL is set
    wallet_url: str | None = None
    wallet_api_key: str | None = None
    wallet_timeout_seconds: float = 5.0

    @property
    def is_dev(self) -> bool:
        return self.env == "dev"


load_dotenv()
settings = Config()

import sqlmodel

from gacha_engine.core.enums import Currency

from ._base import BaseModel


class WalletBalance(BaseModel, table=True):
    """Balances backing the database wallet."""

    __tablename__: str = "wallet_balances"
    __table_args__ = (
        sqlmodel.UniqueConstraint("player_id", "currency", name="uq_wallet_balances_player_currency"),
    )

    id: int = sqlmodel.Field(primary_key=True, index=True, default=None)
    player_id: int = sqlmodel.Field(index=True, sa_type=sqlmodel.BigInteger)
    currency: Currency
    amount: int = sqlmodel.Field(default=0, ge=0)

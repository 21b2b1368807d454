import asyncio
from collections.abc import Awaitable, Callable
from functools import cache
from typing import Any, Protocol

import httpx
from loguru import logger
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from gacha_engine.core.config import settings
from gacha_engine.core.db import create_session
from gacha_engine.core.enums import Currency
from gacha_engine.core.exceptions import UpstreamError
from gacha_engine.models.wallet_balance import WalletBalance


class Wallet(Protocol):
    async def get_balance(self, player_id: int, currency: Currency) -> int: ...

    async def debit(
        self, player_id: int, currency: Currency, amount: int, *, reference: str
    ) -> bool: ...

    async def credit(
        self, player_id: int, currency: Currency, amount: int, *, reference: str
    ) -> None: ...


class TimedWallet:
    """Wrap a wallet so that every call fails with `UpstreamError` after a timeout."""

    def __init__(self, wallet: Wallet, timeout: float) -> None:
        self.wallet = wallet
        self.timeout = timeout

    async def _call[T](self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except TimeoutError:
            logger.warning(f"Wallet {operation} timed out after {self.timeout}s")
            raise UpstreamError(f"Wallet {operation} timed out") from None

    async def get_balance(self, player_id: int, currency: Currency) -> int:
        return await self._call("balance check", self.wallet.get_balance(player_id, currency))

    async def debit(
        self, player_id: int, currency: Currency, amount: int, *, reference: str
    ) -> bool:
        return await self._call(
            "debit", self.wallet.debit(player_id, currency, amount, reference=reference)
        )

    async def credit(
        self, player_id: int, currency: Currency, amount: int, *, reference: str
    ) -> None:
        await self._call(
            "credit", self.wallet.credit(player_id, currency, amount, reference=reference)
        )


class DatabaseWallet:
    """Wallet backed by the `wallet_balances` table.

    Each call runs in its own session so a debit is committed independently of the
    pull that requested it, like a remote wallet would.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession] = create_session) -> None:
        self.session_factory = session_factory

    @staticmethod
    async def _get_row(
        session: AsyncSession, player_id: int, currency: Currency
    ) -> WalletBalance | None:
        result = await session.exec(
            select(WalletBalance)
            .where(WalletBalance.player_id == player_id, WalletBalance.currency == currency)
            .with_for_update()
        )
        return result.first()

    async def get_balance(self, player_id: int, currency: Currency) -> int:
        async with self.session_factory() as session:
            result = await session.exec(
                select(WalletBalance.amount).where(
                    WalletBalance.player_id == player_id, WalletBalance.currency == currency
                )
            )
            return result.first() or 0

    async def debit(
        self, player_id: int, currency: Currency, amount: int, *, reference: str
    ) -> bool:
        async with self.session_factory() as session:
            balance = await self._get_row(session, player_id, currency)
            if balance is None or balance.amount < amount:
                return False

            balance.amount -= amount
            session.add(balance)
            await session.commit()

        logger.debug(f"Debited {amount} {currency} from player {player_id} ({reference})")
        return True

    async def credit(
        self, player_id: int, currency: Currency, amount: int, *, reference: str
    ) -> None:
        async with self.session_factory() as session:
            balance = await self._get_row(session, player_id, currency)
            if balance is None:
                balance = WalletBalance(player_id=player_id, currency=currency, amount=0)

            balance.amount += amount
            session.add(balance)
            await session.commit()

        logger.debug(f"Credited {amount} {currency} to player {player_id} ({reference})")


class HttpWallet:
    """Client of a remote wallet service.

    `reference` is sent as the idempotency key so a retried debit or refund is
    applied once.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    async def _request(
        self, method: str, path: str, *, reference: str | None = None, **kwargs: Any
    ) -> dict[str, Any]:
        headers: dict[str, str] = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if reference:
            headers["Idempotency-Key"] = reference

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.request(method, path, headers=headers, **kwargs)
                response.raise_for_status()
        except httpx.TimeoutException as e:
            raise UpstreamError(f"Wallet request {method} {path} timed out") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"Wallet request {method} {path} failed: {e}") from e

        result: dict[str, Any] = response.json()
        return result

    async def get_balance(self, player_id: int, currency: Currency) -> int:
        data = await self._request("GET", f"/players/{player_id}/balances/{currency}")
        return int(data["amount"])

    async def debit(
        self, player_id: int, currency: Currency, amount: int, *, reference: str
    ) -> bool:
        data = await self._request(
            "POST",
            f"/players/{player_id}/debit",
            reference=reference,
            json={"currency": currency, "amount": amount},
        )
        return bool(data.get("success"))

    async def credit(
        self, player_id: int, currency: Currency, amount: int, *, reference: str
    ) -> None:
        await self._request(
            "POST",
            f"/players/{player_id}/credit",
            reference=reference,
            json={"currency": currency, "amount": amount},
        )


@cache
def get_wallet() -> Wallet:
    wallet: Wallet
    if settings.wallet_url:
        wallet = HttpWallet(
            settings.wallet_url,
            api_key=settings.wallet_api_key,
            timeout=settings.wallet_timeout_seconds,
        )
    else:
        wallet = DatabaseWallet()
    return TimedWallet(wallet, settings.wallet_timeout_seconds)

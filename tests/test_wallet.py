import json
from collections.abc import Callable

import httpx
import pytest
from conftest import PLAYER_ID, FakeWallet
from sqlmodel.ext.asyncio.session import AsyncSession

from gacha_engine.core.enums import Currency
from gacha_engine.core.exceptions import UpstreamError
from gacha_engine.models.wallet_balance import WalletBalance
from gacha_engine.services.wallet import DatabaseWallet, HttpWallet, TimedWallet


class TestDatabaseWallet:
    @pytest.fixture
    async def wallet(self, session_factory: Callable[[], AsyncSession]) -> DatabaseWallet:
        async with session_factory() as session:
            session.add(WalletBalance(player_id=PLAYER_ID, currency=Currency.SOFT, amount=300))
            await session.commit()
        return DatabaseWallet(session_factory)

    async def test_balance(self, wallet: DatabaseWallet):
        assert await wallet.get_balance(PLAYER_ID, Currency.SOFT) == 300
        assert await wallet.get_balance(PLAYER_ID, Currency.PREMIUM) == 0

    async def test_debit(self, wallet: DatabaseWallet):
        assert await wallet.debit(PLAYER_ID, Currency.SOFT, 100, reference="p1")
        assert await wallet.get_balance(PLAYER_ID, Currency.SOFT) == 200

    async def test_debit_over_balance_is_refused(self, wallet: DatabaseWallet):
        assert not await wallet.debit(PLAYER_ID, Currency.SOFT, 301, reference="p1")
        assert not await wallet.debit(PLAYER_ID, Currency.PREMIUM, 1, reference="p2")
        assert await wallet.get_balance(PLAYER_ID, Currency.SOFT) == 300

    async def test_credit_creates_missing_balance(self, wallet: DatabaseWallet):
        await wallet.credit(PLAYER_ID, Currency.PREMIUM, 50, reference="refund-p1")
        await wallet.credit(PLAYER_ID, Currency.SOFT, 50, reference="refund-p2")

        assert await wallet.get_balance(PLAYER_ID, Currency.PREMIUM) == 50
        assert await wallet.get_balance(PLAYER_ID, Currency.SOFT) == 350


class TestHttpWallet:
    @staticmethod
    def make_wallet(handler: Callable[[httpx.Request], httpx.Response]) -> HttpWallet:
        return HttpWallet(
            "https://wallet.test/api/",
            api_key="secret",
            transport=httpx.MockTransport(handler),
        )

    async def test_balance(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "GET"
            assert request.url.path == f"/api/players/{PLAYER_ID}/balances/premium"
            assert request.headers["Authorization"] == "Bearer secret"
            return httpx.Response(200, json={"amount": 420})

        assert await self.make_wallet(handler).get_balance(PLAYER_ID, Currency.PREMIUM) == 420

    async def test_debit_sends_idempotency_key(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"success": True})

        ok = await self.make_wallet(handler).debit(PLAYER_ID, Currency.SOFT, 100, reference="abc")

        assert ok
        assert seen[0].url.path == f"/api/players/{PLAYER_ID}/debit"
        assert seen[0].headers["Idempotency-Key"] == "abc"
        assert json.loads(seen[0].content) == {"currency": "soft", "amount": 100}

    async def test_refused_debit(self):
        wallet = self.make_wallet(lambda _: httpx.Response(200, json={"success": False}))

        assert not await wallet.debit(PLAYER_ID, Currency.SOFT, 100, reference="abc")

    async def test_server_error_is_upstream_error(self):
        wallet = self.make_wallet(lambda _: httpx.Response(500))

        with pytest.raises(UpstreamError):
            await wallet.credit(PLAYER_ID, Currency.SOFT, 100, reference="refund-abc")

    async def test_timeout_is_upstream_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(UpstreamError, match="timed out"):
            await self.make_wallet(handler).get_balance(PLAYER_ID, Currency.SOFT)


async def test_timed_wallet_passes_through_fast_calls():
    inner = FakeWallet({(PLAYER_ID, Currency.SOFT): 100})
    wallet = TimedWallet(inner, timeout=1.0)

    assert await wallet.debit(PLAYER_ID, Currency.SOFT, 60, reference="p1")
    await wallet.credit(PLAYER_ID, Currency.SOFT, 10, reference="p2")

    assert await wallet.get_balance(PLAYER_ID, Currency.SOFT) == 50


async def test_timed_wallet_times_out():
    wallet = TimedWallet(FakeWallet(delay=1.0), timeout=0.01)

    with pytest.raises(UpstreamError):
        await wallet.debit(PLAYER_ID, Currency.SOFT, 1, reference="p1")

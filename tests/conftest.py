import asyncio
import datetime
from collections.abc import AsyncGenerator, Callable, Iterable
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlmodel.ext.asyncio.session import AsyncSession

from gacha_engine.core.db import create_session, init_db
from gacha_engine.core.enums import Currency
from gacha_engine.core.gacha import GachaConfig
from gacha_engine.services.catalog import RarityCatalog
from gacha_engine.services.collection import CollectionLedger
from gacha_engine.services.drop_rate import DropRateCalculator
from gacha_engine.services.eligibility import EligibilityGate
from gacha_engine.services.gacha import GachaService
from gacha_engine.services.locks import PlayerLocks
from gacha_engine.services.pity import PityTracker
from gacha_engine.services.pull_history import PullHistoryService
from gacha_engine.services.selector import RandomSource, WeightedSelector
from gacha_engine.services.wallet import Wallet

PLAYER_ID = 1
STARTING_SOFT = 10_000
STARTING_PREMIUM = 1_000

TEST_CATALOG: dict[str, Any] = {
    "tiers": [
        {
            "id": "common",
            "name": "Common",
            "base_drop_rate": 0.6,
            "items": [
                {"id": "c1", "name": "Sampling Notes", "base_value": 5, "category": "data_analysis"},
                {"id": "c2", "name": "Bias Checklist", "base_value": 5, "category": "bias_detection"},
                {"id": "c3", "name": "Logic Primer", "base_value": 5, "category": "critical_thinking"},
                {"id": "c4", "name": "Ethics Card", "base_value": 5, "category": "ai_ethics"},
            ],
        },
        {
            "id": "rare",
            "name": "Rare",
            "base_drop_rate": 0.25,
            "pity_threshold": 20,
            "soft_pity_start": 15,
            "items": [
                {"id": "r1", "name": "Confounder Lens", "base_value": 25, "category": "bias_detection"},
                {"id": "r2", "name": "Survey Kit", "base_value": 25, "category": "data_analysis"},
            ],
        },
        {
            "id": "epic",
            "name": "Epic",
            "base_drop_rate": 0.1,
            "pity_threshold": 50,
            "items": [
                {"id": "e1", "name": "Peer Review Seal", "base_value": 50, "stackable": False},
                {"id": "e2", "name": "Replication Badge", "base_value": 50, "stackable": False},
            ],
        },
        {
            "id": "legendary",
            "name": "Legendary",
            "base_drop_rate": 0.05,
            "pity_threshold": 90,
            "items": [
                {
                    "id": "l1",
                    "name": "Golden Dataset",
                    "base_value": 100,
                    "stackable": False,
                    "special_effect": {"type": "experience_boost", "value": 1.5},
                }
            ],
        },
    ]
}


class FrozenClock:
    def __init__(self, now: datetime.datetime) -> None:
        self._now = now

    def now(self) -> datetime.datetime:
        return self._now

    def advance(self, **kwargs: float) -> None:
        self._now += datetime.timedelta(**kwargs)


class ScriptedRandom:
    """Random source replaying a fixed sequence of draws."""

    def __init__(self, values: Iterable[float]) -> None:
        self._values = iter(values)
        self.calls = 0

    def random(self) -> float:
        self.calls += 1
        return next(self._values)


class FakeWallet:
    """In-memory wallet recording every debit and credit."""

    def __init__(
        self, balances: dict[tuple[int, Currency], int] | None = None, *, delay: float = 0.0
    ) -> None:
        self.balances = dict(balances or {})
        self.delay = delay
        self.debits: list[tuple[int, Currency, int, str]] = []
        self.credits: list[tuple[int, Currency, int, str]] = []

    async def _wait(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)

    async def get_balance(self, player_id: int, currency: Currency) -> int:
        await self._wait()
        return self.balances.get((player_id, currency), 0)

    async def debit(
        self, player_id: int, currency: Currency, amount: int, *, reference: str
    ) -> bool:
        await self._wait()
        balance = self.balances.get((player_id, currency), 0)
        if balance < amount:
            return False
        self.balances[(player_id, currency)] = balance - amount
        self.debits.append((player_id, currency, amount, reference))
        return True

    async def credit(
        self, player_id: int, currency: Currency, amount: int, *, reference: str
    ) -> None:
        await self._wait()
        self.balances[(player_id, currency)] = self.balances.get((player_id, currency), 0) + amount
        self.credits.append((player_id, currency, amount, reference))


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'gacha.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> Callable[[], AsyncSession]:
    return lambda: create_session(engine)


@pytest.fixture
async def db(session_factory: Callable[[], AsyncSession]) -> AsyncGenerator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def catalog() -> RarityCatalog:
    catalog = RarityCatalog.from_dict(TEST_CATALOG)
    catalog.validate()
    return catalog


@pytest.fixture
def config() -> GachaConfig:
    return GachaConfig()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime.datetime(2025, 1, 15, 12, 0, tzinfo=datetime.UTC))


@pytest.fixture
def wallet() -> FakeWallet:
    return FakeWallet(
        {
            (PLAYER_ID, Currency.SOFT): STARTING_SOFT,
            (PLAYER_ID, Currency.PREMIUM): STARTING_PREMIUM,
        }
    )


@pytest.fixture
def history(db: AsyncSession, config: GachaConfig, clock: FrozenClock) -> PullHistoryService:
    return PullHistoryService(db, config, clock)


@pytest.fixture
def pity(db: AsyncSession, catalog: RarityCatalog, clock: FrozenClock) -> PityTracker:
    return PityTracker(db, catalog, clock)


@pytest.fixture
def ledger(db: AsyncSession, catalog: RarityCatalog, clock: FrozenClock) -> CollectionLedger:
    return CollectionLedger(db, catalog, clock)


@pytest.fixture
def calculator(
    catalog: RarityCatalog,
    config: GachaConfig,
    pity: PityTracker,
    ledger: CollectionLedger,
    history: PullHistoryService,
) -> DropRateCalculator:
    return DropRateCalculator(catalog, config, pity, ledger, history)


type ServiceFactory = Callable[..., GachaService]


@pytest.fixture
def make_service(
    db: AsyncSession,
    catalog: RarityCatalog,
    config: GachaConfig,
    clock: FrozenClock,
    wallet: FakeWallet,
) -> ServiceFactory:
    """Build a `GachaService` by hand, the way FastAPI would resolve it."""

    def factory(
        rng: RandomSource,
        *,
        session: AsyncSession | None = None,
        catalog: RarityCatalog = catalog,
        config: GachaConfig = config,
        wallet: Wallet = wallet,
        locks: PlayerLocks | None = None,
    ) -> GachaService:
        session = session or db
        history = PullHistoryService(session, config, clock)
        pity = PityTracker(session, catalog, clock)
        ledger = CollectionLedger(session, catalog, clock)
        return GachaService(
            db=session,
            config=config,
            gate=EligibilityGate(config, wallet, history),
            calculator=DropRateCalculator(catalog, config, pity, ledger, history),
            selector=WeightedSelector(catalog, rng),
            pity=pity,
            ledger=ledger,
            history=history,
            wallet=wallet,
            clock=clock,
            locks=locks if locks is not None else PlayerLocks(),
        )

    return factory

import asyncio
import math
from collections.abc import Sequence
from typing import Annotated
from uuid import uuid4

from fastapi import Depends
from loguru import logger
from sqlmodel.ext.asyncio.session import AsyncSession

from gacha_engine.core.db import get_db
from gacha_engine.core.enums import DenialReason, EventType, PullType, Rarity
from gacha_engine.core.exceptions import GachaError, IneligibleError, UpstreamError
from gacha_engine.core.gacha import GachaConfig, get_gacha_config
from gacha_engine.models.collection_entry import CollectionEntry
from gacha_engine.models.event_log import EventLog
from gacha_engine.models.pity_state import PityState
from gacha_engine.schemas.catalog import GachaItem
from gacha_engine.schemas.gacha import DrawnItem, PullGrant, PullResult
from gacha_engine.services.collection import CollectionLedger
from gacha_engine.services.drop_rate import DropRateCalculator, RateContext
from gacha_engine.services.eligibility import EligibilityGate
from gacha_engine.services.locks import PlayerLocks, get_player_locks
from gacha_engine.services.pity import PityTracker
from gacha_engine.services.pull_history import PullHistoryService
from gacha_engine.services.selector import WeightedSelector
from gacha_engine.services.wallet import Wallet, get_wallet
from gacha_engine.utils.misc import Clock, get_clock


class GachaService:
    """Compose the engine components into the atomic pull operation."""

    def __init__(
        self,
        db: Annotated[AsyncSession, Depends(get_db)],
        config: Annotated[GachaConfig, Depends(get_gacha_config)],
        gate: Annotated[EligibilityGate, Depends()],
        calculator: Annotated[DropRateCalculator, Depends()],
        selector: Annotated[WeightedSelector, Depends()],
        pity: Annotated[PityTracker, Depends()],
        ledger: Annotated[CollectionLedger, Depends()],
        history: Annotated[PullHistoryService, Depends()],
        wallet: Annotated[Wallet, Depends(get_wallet)],
        clock: Annotated[Clock, Depends(get_clock)],
        locks: Annotated[PlayerLocks, Depends(get_player_locks)],
    ) -> None:
        self.db = db
        self.config = config
        self.gate = gate
        self.calculator = calculator
        self.selector = selector
        self.pity = pity
        self.ledger = ledger
        self.history = history
        self.wallet = wallet
        self.clock = clock
        self.locks = locks

    async def perform_pull(self, player_id: int, pull_type: PullType | str) -> PullResult:
        """Perform a gacha pull for a player.

        Pulls of the same player are serialized. Once started, a pull runs to
        completion even if the caller is cancelled, so a charged pull always
        delivers its items or refunds its cost.

        Raises:
            IneligibleError: If the pull was denied; nothing was changed.
            UpstreamError: If the wallet timed out or failed. A debit that failed
                this way is refunded, since it may have been applied.
            ConfigurationError: If the catalog cannot serve the pull.
        """
        return await asyncio.shield(self._locked_pull(player_id, pull_type))

    async def _locked_pull(self, player_id: int, pull_type: PullType | str) -> PullResult:
        async with self.locks.hold(player_id):
            try:
                return await self._pull(player_id, pull_type)
            except GachaError:
                await self.db.rollback()
                raise

    async def _pull(self, player_id: int, pull_type: PullType | str) -> PullResult:
        try:
            approval = await self.gate.authorize(player_id, pull_type)
        except IneligibleError as e:
            logger.info(f"Pull {pull_type} denied for player {player_id}: {e.reason}")
            raise

        # Everything the rolls need is read before the charge
        states = await self.pity.load_states(player_id)
        entries = await self.ledger.load_entries(player_id)
        trailing = await self.history.trailing_values(
            player_id, self.config.compensation.bad_luck_window
        )
        stale = await self.history.stale_records(player_id)
        context = self.calculator.build_context(
            approval.pull_type, self.ledger.completion_by_tier(entries), trailing
        )

        grant = PullGrant(
            pull_id=uuid4().hex,
            player_id=player_id,
            pull_type=approval.pull_type,
            roll_count=approval.roll_count,
            cost=approval.cost,
            currency=approval.currency,
            day_key=approval.day_key,
            granted_at=self.clock.now(),
        )
        try:
            await self._charge(grant)
        except UpstreamError:
            # The debit may have landed before the wallet stopped answering
            logger.exception(f"Debit for pull {grant.pull_id} has an unknown outcome")
            await self.db.rollback()
            await self._refund(grant)
            raise

        try:
            result = self._roll(grant, context, states, entries)
            for record in stale:
                await self.db.delete(record)
            await self.db.commit()
        except Exception:
            logger.exception(f"Pull {grant.pull_id} failed after charging player {player_id}")
            await self.db.rollback()
            await self._refund(grant)
            raise

        logger.info(
            f"Player {player_id} pulled {grant.pull_type} ({grant.pull_id}): "
            f"{', '.join(f'{i.item_id} [{i.tier}]' for i in result.items)}"
        )
        return result

    async def _charge(self, grant: PullGrant) -> None:
        if grant.cost <= 0:
            return

        debited = await self.wallet.debit(
            grant.player_id, grant.currency, grant.cost, reference=grant.pull_id
        )
        if not debited:
            # Balance changed between the check and the debit
            logger.info(
                f"Debit refused for player {grant.player_id}, pull {grant.pull_id} denied"
            )
            raise IneligibleError(DenialReason.INSUFFICIENT_FUNDS, pull_type=grant.pull_type)

    def _roll(
        self,
        grant: PullGrant,
        context: RateContext,
        states: dict[Rarity, PityState],
        entries: dict[str, CollectionEntry],
    ) -> PullResult:
        items: list[GachaItem] = []
        drawn: list[DrawnItem] = []
        seen = set(entries)
        guarantee_fired = False

        for _ in range(grant.roll_count):
            forced = self.pity.forced_tier(states)
            if forced is not None:
                rarity = forced
                guarantee_fired = True
            else:
                counters = {r: state.counter for r, state in states.items()}
                rarity = self.selector.select_tier(self.calculator.distribution(counters, context))

            item = self.selector.select_item(rarity)
            self.pity.apply(grant, states, item.tier, forced=forced)

            items.append(item)
            drawn.append(
                DrawnItem(
                    item_id=item.id,
                    name=item.name,
                    tier=item.tier,
                    base_value=item.base_value,
                    is_new=item.id not in seen,
                    was_guaranteed=forced is not None,
                )
            )
            seen.add(item.id)

        self.ledger.stage_items(grant.player_id, items, entries)
        self.history.record(grant, items, guarantee_fired=guarantee_fired)

        pull_config = self.config.pull_types[grant.pull_type]
        total_value = sum(item.base_value for item in items)
        new_items = sum(1 for item in drawn if item.is_new)
        experience = (
            math.floor(total_value * pull_config.experience_multiplier)
            + new_items * self.config.new_item_experience
        )
        pity_after = {rarity: state.counter for rarity, state in states.items()}

        self._log_events(grant, drawn, pity_after, guarantee_fired=guarantee_fired)

        return PullResult(
            pull_id=grant.pull_id,
            player_id=grant.player_id,
            pull_type=grant.pull_type,
            items=drawn,
            pity_after=pity_after,
            total_value=total_value,
            experience_gained=experience,
            guarantee_fired=guarantee_fired,
            cost=grant.cost,
            currency=grant.currency,
            timestamp=grant.granted_at,
        )

    def _log_events(
        self,
        grant: PullGrant,
        drawn: Sequence[DrawnItem],
        pity_after: dict[Rarity, int],
        *,
        guarantee_fired: bool,
    ) -> None:
        self.db.add(
            EventLog(
                player_id=grant.player_id,
                event_type=EventType.GACHA_PULL,
                context={
                    "pull_id": grant.pull_id,
                    "pull_type": grant.pull_type.value,
                    "item_ids": [item.item_id for item in drawn],
                    "cost": grant.cost,
                    "currency": grant.currency.value,
                    "pity_after": {rarity.value: count for rarity, count in pity_after.items()},
                },
                created_at=grant.granted_at,
            )
        )

        if guarantee_fired:
            self.db.add(
                EventLog(
                    player_id=grant.player_id,
                    event_type=EventType.GACHA_GUARANTEE,
                    context={
                        "pull_id": grant.pull_id,
                        "item_ids": [item.item_id for item in drawn if item.was_guaranteed],
                    },
                    created_at=grant.granted_at,
                )
            )

    async def _refund(self, grant: PullGrant) -> None:
        """Return the cost of a failed pull.

        A refund the wallet cannot take is recorded as a pending refund event
        instead, so the amount owed can be credited later under the same
        reference. Either way the caller re-raises the error that failed the pull.
        """
        if grant.cost <= 0:
            return

        reference = f"refund-{grant.pull_id}"
        event_type = EventType.GACHA_REFUND
        try:
            await self.wallet.credit(
                grant.player_id, grant.currency, grant.cost, reference=reference
            )
        except Exception:
            logger.exception(
                f"Refund of {grant.cost} {grant.currency} to player {grant.player_id} "
                f"for pull {grant.pull_id} failed, recording it as pending"
            )
            event_type = EventType.GACHA_REFUND_PENDING
        else:
            logger.error(
                f"Refunded {grant.cost} {grant.currency} to player {grant.player_id} "
                f"for failed pull {grant.pull_id}"
            )

        self.db.add(
            EventLog(
                player_id=grant.player_id,
                event_type=event_type,
                context={
                    "pull_id": grant.pull_id,
                    "amount": grant.cost,
                    "currency": grant.currency.value,
                    "reference": reference,
                },
            )
        )
        await self.db.commit()

    async def get_pity_status(self, player_id: int) -> dict[Rarity, int]:
        return await self.pity.get_pity_status(player_id)

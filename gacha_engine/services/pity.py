from collections.abc import Mapping
from typing import Annotated

from fastapi import Depends
from loguru import logger
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from gacha_engine.core.db import get_db
from gacha_engine.core.enums import Rarity
from gacha_engine.core.exceptions import PityUpdateRejectedError
from gacha_engine.models.pity_state import PityState
from gacha_engine.schemas.gacha import PullGrant
from gacha_engine.services.catalog import RarityCatalog, get_catalog
from gacha_engine.utils.misc import Clock, get_clock


def guaranteed_tier(catalog: RarityCatalog, counters: Mapping[Rarity, int]) -> Rarity | None:
    """Return the highest tier whose counter reached its hard threshold, if any."""
    forced: Rarity | None = None
    for tier in catalog.pity_tiers():
        if counters.get(tier.id, 0) >= tier.pity_threshold:
            forced = tier.id
    return forced


class PityTracker:
    def __init__(
        self,
        db: Annotated[AsyncSession, Depends(get_db)],
        catalog: Annotated[RarityCatalog, Depends(get_catalog)],
        clock: Annotated[Clock, Depends(get_clock)],
    ) -> None:
        self.db = db
        self.catalog = catalog
        self.clock = clock

    async def get_pity_status(self, player_id: int) -> dict[Rarity, int]:
        """Current counter of every pity-enabled tier. Never creates state."""
        result = await self.db.exec(select(PityState).where(PityState.player_id == player_id))
        stored = {state.rarity: state.counter for state in result.all()}
        return {
            tier.id: min(stored.get(tier.id, 0), tier.pity_threshold)
            for tier in self.catalog.pity_tiers()
        }

    async def load_states(self, player_id: int) -> dict[Rarity, PityState]:
        """Load the player's pity states for update, creating missing ones in memory.

        New states are only added to the session once a granted roll updates them.
        """
        result = await self.db.exec(
            select(PityState).where(PityState.player_id == player_id).with_for_update()
        )
        existing = {state.rarity: state for state in result.all()}

        states: dict[Rarity, PityState] = {}
        for tier in self.catalog.pity_tiers():
            state = existing.get(tier.id)
            if state is None:
                state = PityState(player_id=player_id, rarity=tier.id, counter=0)
            # A refreshed catalog may have lowered the threshold
            state.counter = min(state.counter, tier.pity_threshold)
            states[tier.id] = state
        return states

    def forced_tier(self, states: Mapping[Rarity, PityState]) -> Rarity | None:
        return guaranteed_tier(self.catalog, {rarity: s.counter for rarity, s in states.items()})

    def apply(
        self,
        grant: PullGrant | None,
        states: Mapping[Rarity, PityState],
        rolled: Rarity,
        *,
        forced: Rarity | None = None,
    ) -> None:
        """Apply the post-roll update to every pity-enabled tier.

        A tier resets when the roll delivered it (or a higher tier) and it resets on
        rare pulls, or when it was the forced tier. Otherwise its counter grows, up to
        the hard threshold.

        Raises:
            PityUpdateRejectedError: If the roll does not belong to a granted pull of
                the state's owner.
        """
        if grant is None:
            raise PityUpdateRejectedError("Pity can only be updated for a granted pull")

        now = self.clock.now()
        for rarity, state in states.items():
            if state.player_id != grant.player_id:
                raise PityUpdateRejectedError(
                    f"Pull {grant.pull_id} was not granted to player {state.player_id}"
                )

            tier = self.catalog.get_tier(rarity)
            if tier is None or not tier.has_pity:
                continue

            if rarity == forced or (tier.reset_on_rare_pull and rolled.rank >= rarity.rank):
                if state.counter:
                    logger.debug(f"Pity reset for player {state.player_id} on {rarity}")
                state.counter = 0
                state.last_reset_at = now
            else:
                state.counter = min(state.counter + 1, tier.pity_threshold)

            self.db.add(state)

from typing import Annotated

from fastapi import Depends
from loguru import logger

from gacha_engine.core.enums import DenialReason, PullType
from gacha_engine.core.exceptions import IneligibleError
from gacha_engine.core.gacha import GachaConfig, get_gacha_config
from gacha_engine.schemas.gacha import EligibilityDecision, PullApproval
from gacha_engine.services.pull_history import PullHistoryService
from gacha_engine.services.wallet import Wallet, get_wallet


class EligibilityGate:
    def __init__(
        self,
        config: Annotated[GachaConfig, Depends(get_gacha_config)],
        wallet: Annotated[Wallet, Depends(get_wallet)],
        history: Annotated[PullHistoryService, Depends()],
    ) -> None:
        self.config = config
        self.wallet = wallet
        self.history = history

    async def check_eligibility(
        self, player_id: int, pull_type: PullType | str
    ) -> EligibilityDecision:
        """Decide whether a pull may proceed, without mutating anything.

        Raises:
            UpstreamError: If the wallet balance could not be read in time.
        """
        try:
            approval = await self.authorize(player_id, pull_type)
        except IneligibleError as e:
            return EligibilityDecision.deny(e.reason, pull_type=e.pull_type)
        return EligibilityDecision.approve(approval)

    async def authorize(self, player_id: int, pull_type: PullType | str) -> PullApproval:
        """Return the terms of an allowed pull.

        Checks run from the cheapest to the wallet round trip: known pull type,
        free daily allotment, daily roll limit, then the currency balance.

        Raises:
            IneligibleError: If the pull is denied.
            UpstreamError: If the wallet balance could not be read in time.
        """
        try:
            resolved = PullType(pull_type)
        except ValueError:
            raise IneligibleError(DenialReason.UNKNOWN_PULL_TYPE) from None

        pull_config = self.config.get_pull_type(resolved)
        if pull_config is None:
            raise IneligibleError(DenialReason.UNKNOWN_PULL_TYPE, pull_type=resolved)

        day_key = await self.history.day_key(player_id)
        usage = await self.history.daily_usage(player_id, day_key)

        if pull_config.is_free and usage.free_pulls >= self.config.daily_free_pulls:
            raise IneligibleError(DenialReason.FREE_PULL_EXHAUSTED, pull_type=resolved)

        if usage.rolls + pull_config.roll_count > self.config.max_daily_rolls:
            raise IneligibleError(DenialReason.DAILY_LIMIT_REACHED, pull_type=resolved)

        if pull_config.cost > 0:
            balance = await self.wallet.get_balance(player_id, pull_config.currency)
            if balance < pull_config.cost:
                logger.debug(
                    f"Player {player_id} has {balance} {pull_config.currency}, "
                    f"{resolved} costs {pull_config.cost}"
                )
                raise IneligibleError(DenialReason.INSUFFICIENT_FUNDS, pull_type=resolved)

        return PullApproval(
            pull_type=resolved,
            roll_count=pull_config.roll_count,
            cost=pull_config.cost,
            currency=pull_config.currency,
            day_key=day_key,
        )

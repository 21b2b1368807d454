from typing import Annotated

from fastapi import APIRouter, Depends, Query

from gacha_engine.core.enums import PullType, Rarity
from gacha_engine.schemas.common import APIResponse
from gacha_engine.schemas.gacha import EligibilityDecision, GachaStats, PullRequest, PullResult
from gacha_engine.services.drop_rate import DropRateCalculator
from gacha_engine.services.eligibility import EligibilityGate
from gacha_engine.services.gacha import GachaService
from gacha_engine.services.pull_history import PullHistoryService

router = APIRouter(prefix="/gacha", tags=["gacha"])


@router.post("/pull")
async def pull(
    request: PullRequest, service: Annotated[GachaService, Depends()]
) -> APIResponse[PullResult]:
    result = await service.perform_pull(request.player_id, request.pull_type)
    return APIResponse(data=result, message=f"Pulled {len(result.items)} item(s)")


@router.get("/pity/{player_id}")
async def get_pity_status(
    player_id: int, service: Annotated[GachaService, Depends()]
) -> APIResponse[dict[Rarity, int]]:
    return APIResponse(data=await service.get_pity_status(player_id))


@router.get("/eligibility/{player_id}")
async def check_eligibility(
    player_id: int,
    gate: Annotated[EligibilityGate, Depends()],
    pull_type: Annotated[PullType, Query()] = PullType.SINGLE,
) -> APIResponse[EligibilityDecision]:
    return APIResponse(data=await gate.check_eligibility(player_id, pull_type))


@router.get("/distribution/{player_id}")
async def get_distribution(
    player_id: int,
    calculator: Annotated[DropRateCalculator, Depends()],
    pull_type: Annotated[PullType, Query()] = PullType.SINGLE,
) -> APIResponse[dict[Rarity, float]]:
    """Drop rates of the player's next roll, for display."""
    return APIResponse(data=await calculator.compute_distribution(player_id, pull_type))


@router.get("/stats/{player_id}")
async def get_stats(
    player_id: int, history: Annotated[PullHistoryService, Depends()]
) -> APIResponse[GachaStats]:
    return APIResponse(data=await history.get_player_stats(player_id))

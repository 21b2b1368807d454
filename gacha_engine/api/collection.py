from typing import Annotated

from fastapi import APIRouter, Depends

from gacha_engine.schemas.collection import AcknowledgeRequest, CollectionSummary
from gacha_engine.schemas.common import APIResponse
from gacha_engine.services.collection import CollectionLedger

router = APIRouter(prefix="/collections", tags=["collections"])


@router.get("/{player_id}")
async def get_collection(
    player_id: int, ledger: Annotated[CollectionLedger, Depends()]
) -> APIResponse[CollectionSummary]:
    return APIResponse(data=await ledger.get_player_collection(player_id))


@router.post("/{player_id}/acknowledge")
async def acknowledge_items(
    player_id: int, request: AcknowledgeRequest, ledger: Annotated[CollectionLedger, Depends()]
) -> APIResponse[int]:
    """Mark new items as seen."""
    count = await ledger.acknowledge(player_id, request.item_ids)
    return APIResponse(data=count, message=f"Acknowledged {count} item(s)")

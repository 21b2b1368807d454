from typing import Annotated

from fastapi import APIRouter, Depends

from gacha_engine.schemas.catalog import RarityTier
from gacha_engine.schemas.common import APIResponse
from gacha_engine.services.catalog import CatalogStore, RarityCatalog, get_catalog, get_catalog_store

router = APIRouter(prefix="/catalog", tags=["catalog"])


@router.get("/tiers")
async def get_tiers(
    catalog: Annotated[RarityCatalog, Depends(get_catalog)],
) -> APIResponse[list[RarityTier]]:
    return APIResponse(data=list(catalog.tiers))


@router.post("/refresh")
async def refresh_catalog(
    store: Annotated[CatalogStore, Depends(get_catalog_store)],
) -> APIResponse[list[RarityTier]]:
    """Reload the catalog snapshot. The current one stays in place if the new one is invalid."""
    catalog = store.refresh()
    return APIResponse(
        data=list(catalog.tiers), message=f"Catalog reloaded with {catalog.total_items} items"
    )

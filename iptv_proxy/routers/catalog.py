"""
Channel catalog admin endpoints.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException

from iptv_proxy.config import Settings, get_settings
from iptv_proxy.services.catalog import ConfigurationError, DuplicateChannelError, ProbeOrchestrator
from iptv_proxy.services.store import DocumentStore, get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/catalog", tags=["catalog"])


@router.get("")
async def get_catalog_summary(store: DocumentStore = Depends(get_store)):
    """Summary of the stored catalog."""
    catalog = await store.load_catalog()
    if catalog is None:
        raise HTTPException(status_code=404, detail="No channel catalog found")
    return _summary(catalog)


@router.post("/refresh")
async def refresh_catalog(
    settings: Settings = Depends(get_settings),
    store: DocumentStore = Depends(get_store),
):
    """
    Re-probe every configured playlist and replace the stored catalog.

    This runs ffprobe against every unique stream and can take minutes.
    """
    try:
        catalog = await ProbeOrchestrator(settings, store).run()
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DuplicateChannelError as e:
        logger.error(f"Catalog refresh aborted: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return _summary(catalog)


def _summary(catalog) -> dict:
    failures: dict[str, int] = {}
    for result in catalog.results:
        if not result.ok:
            failures[result.reason.value] = failures.get(result.reason.value, 0) + 1
    return {
        "date": catalog.date,
        "total": len(catalog.results),
        "working": len(catalog.successful),
        "failures": failures,
    }

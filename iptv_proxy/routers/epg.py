"""
EPG (Electronic Program Guide) endpoints.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import PlainTextResponse, Response

from iptv_proxy.config import Settings, get_settings
from iptv_proxy.services.epg_mapping import CatalogNotFoundError, generate_epg
from iptv_proxy.services.store import DocumentStore, get_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["epg"])


@router.get("/epg.xml")
async def get_epg_xml(store: DocumentStore = Depends(get_store)):
    """
    Get the merged XMLTV guide.

    Channel ids in the guide are the lineup's GuideNumbers.
    """
    xmltv = await store.load_epg()
    if xmltv is None:
        return PlainTextResponse("No EPG generated yet", status_code=404)
    return Response(content=xmltv, media_type="application/xml")


@router.post("/api/epg/refresh")
async def refresh_epg(
    settings: Settings = Depends(get_settings),
    store: DocumentStore = Depends(get_store),
):
    """
    Regenerate the guide from the stored catalog and every guide source.
    """
    try:
        guide = await generate_epg(settings, store)
    except CatalogNotFoundError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return {
        "channels": len(guide.channels),
        "programmes": len(guide.programmes),
        "date": guide.date,
    }

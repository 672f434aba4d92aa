"""
Live streaming endpoints.
Every stream is remuxed through FFmpeg into MPEG-TS for the DVR client.
"""
import logging
from typing import Optional
from urllib.parse import urlparse

import httpx
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, StreamingResponse

from iptv_proxy.config import Settings, get_settings
from iptv_proxy.dependencies import limiter
from iptv_proxy.services.epg_parser import escape_html
from iptv_proxy.services.m3u_parser import M3UParser
from iptv_proxy.services.store import DocumentStore, get_store
from iptv_proxy.services.transcoder import TranscoderService, get_transcoder_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["streams"])

URL_REQUIRED = "an url is needed"


def is_absolute_url(url: Optional[str]) -> bool:
    if not url:
        return False
    parsed = urlparse(url)
    return bool(parsed.scheme and parsed.netloc)


@router.get("/stream")
async def stream(
    url: Optional[str] = Query(None, description="Source stream URL"),
    settings: Settings = Depends(get_settings),
    store: DocumentStore = Depends(get_store),
    transcoder: TranscoderService = Depends(get_transcoder_service),
):
    """
    Stream a source as MPEG-TS.

    The body lasts as long as the source does; FFmpeg is killed as soon as
    the client goes away.
    """
    if not is_absolute_url(url):
        return PlainTextResponse(URL_REQUIRED, status_code=400)

    # The catalog is only needed to decide on audio transcoding
    catalog = await store.load_catalog() if settings.audio_transcode_triggers else None
    session = transcoder.open_session(url, catalog)

    logger.info(f"▶️ Streaming {url}")
    return StreamingResponse(
        transcoder.stream(session),
        media_type="video/mp2t",
        headers={"Cache-Control": "no-cache"},
    )


@router.get("/m3u8", response_class=HTMLResponse)
@limiter.limit(get_settings().m3u8_rate_limit)
async def view_playlist(
    request: Request,
    url: Optional[str] = Query(None, description="Playlist URL"),
    settings: Settings = Depends(get_settings),
):
    """
    Debugging aid: list the tracks of a remote playlist as HTML.
    """
    if not is_absolute_url(url):
        return PlainTextResponse(URL_REQUIRED, status_code=400)

    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds, follow_redirects=True) as client:
        try:
            tracks = await M3UParser().fetch(client, url)
        except httpx.HTTPError as e:
            logger.warning(f"Failed to fetch playlist {url}: {e}")
            return PlainTextResponse(f"could not fetch {url}", status_code=502)

    return "<br />".join(
        f"<b>{escape_html(track.title or 'unknown')}</b> {escape_html(track.url)}"
        for track in tracks
    )

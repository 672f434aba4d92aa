"""
Guide source loading.
Downloads the configured XMLTV feeds (plain or gzipped) plus the Rakuten
listing, and returns them freshest first.
"""
import asyncio
import gzip
import logging
import xml.etree.ElementTree as ET
import zlib
from datetime import datetime, timezone
from typing import Optional

import httpx
from pydantic import ValidationError

from iptv_proxy.config import Settings
from iptv_proxy.models.epg import GuideDocument
from iptv_proxy.services.epg_parser import EPGParser
from iptv_proxy.services.rakuten_epg import RakutenGuideAdapter

logger = logging.getLogger(__name__)

# generated-ts values above this are milliseconds, below are seconds
_MILLISECOND_THRESHOLD = 10 ** 11


def backfill_date(document: GuideDocument):
    """Use the generated-ts attribute as the document date when date is missing."""
    if document.date or not document.generated_ts:
        return
    try:
        value = float(document.generated_ts)
    except ValueError:
        logger.debug(f"Ignoring non-numeric generated-ts {document.generated_ts!r}")
        return
    if value > _MILLISECOND_THRESHOLD:
        value /= 1000
    document.date = datetime.fromtimestamp(value, tz=timezone.utc)


def sort_by_freshness(documents: list[GuideDocument]) -> list[GuideDocument]:
    """Newest generation date first; undated documents rank as the epoch."""
    return sorted(documents, key=lambda d: d.effective_date, reverse=True)


class GuideSourceLoader:
    """Service to download and parse every configured guide source."""

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rakuten: Optional[RakutenGuideAdapter] = None,
    ):
        self.settings = settings
        self.parser = EPGParser()
        self._transport = transport
        self.rakuten = rakuten or RakutenGuideAdapter(
            settings.rakuten_epg,
            timeout=settings.http_timeout_seconds,
            transport=transport,
        )

    def parse_body(self, url: str, body: bytes) -> Optional[GuideDocument]:
        """Parse a downloaded body, gunzipping it first when possible."""
        try:
            logger.info(f"Decompressing {url}")
            unzipped = gzip.decompress(body)
        except (OSError, EOFError, zlib.error):
            unzipped = None

        try:
            if unzipped is not None:
                logger.info(f"Parsing {url}")
                return self.parser.parse(unzipped, source=url)
            logger.info(f"Parsing {url} as text")
            return self.parser.parse(body.decode('utf-8', errors='replace'), source=url)
        except (ET.ParseError, ValueError) as e:
            logger.error(f"Parsing of {url} FAILED: {e}")
            return None

    async def fetch_source(self, client: httpx.AsyncClient, url: str) -> Optional[GuideDocument]:
        """Download and parse one source; None if it could not be used."""
        logger.info(f"Downloading {url}")
        try:
            response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Downloading {url} FAILED: {e}")
            return None
        return self.parse_body(url, response.content)

    async def load_rakuten(self) -> Optional[GuideDocument]:
        try:
            return await self.rakuten.generate()
        except (httpx.HTTPError, ValidationError) as e:
            logger.error(f"Rakuten EPG generation failed: {e}")
            return None

    async def load_all(self) -> list[GuideDocument]:
        """Load every source in parallel and return the usable ones, freshest first."""
        async with httpx.AsyncClient(
            timeout=self.settings.http_timeout_seconds,
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            documents = await asyncio.gather(
                *[self.fetch_source(client, url) for url in self.settings.epg_sources]
            )
        logger.info("All EPG sources downloaded")

        valid = [d for d in documents if d is not None]
        rakuten = await self.load_rakuten()
        if rakuten:
            valid.append(rakuten)

        for document in valid:
            backfill_date(document)
        return sort_by_freshness(valid)

"""
Channel Catalog Service

Builds the tuner lineup: downloads every configured playlist, drops
duplicate stream URLs, probes what is left with bounded concurrency and
numbers the results so that no two channels share a number.
"""
import asyncio
import logging
import unicodedata
from collections import Counter
from datetime import datetime, timezone
from typing import Iterable, Optional

import httpx

from iptv_proxy.config import Settings
from iptv_proxy.models.channel import (
    UNASSIGNED,
    ChannelCatalog,
    ProbeResult,
    Track,
)
from iptv_proxy.services.m3u_parser import M3UParser
from iptv_proxy.services.prober import StreamProber
from iptv_proxy.services.store import DocumentStore

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """The configuration does not allow the requested operation."""


class DuplicateChannelError(RuntimeError):
    """Two catalog entries ended up with the same channel number."""


def dedupe_tracks(playlists: Iterable[list[Track]]) -> list[Track]:
    """Flatten playlists, keeping the first track seen for each URL."""
    seen = set()
    deduped = []
    for playlist in playlists:
        for track in playlist:
            if track.url in seen:
                logger.info(f"{track.url} already added, skipping")
                continue
            seen.add(track.url)
            deduped.append(track)
    return deduped


def _name_sort_key(name: str) -> tuple[str, str]:
    # Accent and case insensitive first, raw name as tie-breaker
    decomposed = unicodedata.normalize("NFKD", name)
    folded = "".join(c for c in decomposed if not unicodedata.combining(c)).casefold()
    return folded, name


def assign_channel_numbers(results: list[ProbeResult]) -> list[ProbeResult]:
    """
    Give every result a unique channel number and return them in lineup order.

    Hinted results keep their number unless it collides; collisions are
    resolved from the end of the list backward by moving the later entry past
    the highest hint. Unhinted results are sorted by name and numbered after
    everything else. Mutates the results' channel_number.
    """
    with_number = [r for r in results if r.channel_number != UNASSIGNED]
    without_number = [r for r in results if r.channel_number == UNASSIGNED]

    last_channel = max((r.channel_number for r in with_number), default=0)

    increment = 0
    for i in range(len(with_number) - 1, -1, -1):
        result = with_number[i]
        collides = any(
            other is not result and other.channel_number == result.channel_number
            for other in with_number
        )
        if collides:
            increment += 1
            previous = result.channel_number
            result.channel_number = last_channel + increment
            logger.info(f"Moved {result.channel_name} from {previous} to {result.channel_number}")
    last_channel += increment

    without_number.sort(key=lambda r: _name_sort_key(r.channel_name))
    for index, result in enumerate(without_number):
        result.channel_number = last_channel + index + 1

    with_number.sort(key=lambda r: r.channel_number)
    return with_number + without_number


def check_unique_channel_numbers(results: list[ProbeResult]):
    """Raise DuplicateChannelError if any channel number is used twice."""
    counts = Counter(r.channel_number for r in results if r.channel_number != UNASSIGNED)
    for result in results:
        if counts[result.channel_number] > 1:
            raise DuplicateChannelError(
                f"Duplicate channel! {result.channel_name} ({result.channel_number})"
            )


class ProbeOrchestrator:
    """Turns the configured playlists into a persisted ChannelCatalog."""

    def __init__(
        self,
        settings: Settings,
        store: DocumentStore,
        prober: Optional[StreamProber] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.store = store
        self.prober = prober or StreamProber(settings)
        self.parser = M3UParser()
        self._transport = transport

    async def fetch_playlists(self) -> list[list[Track]]:
        """Download every configured playlist in parallel. Failed ones yield no tracks."""
        async with httpx.AsyncClient(
            timeout=self.settings.http_timeout_seconds,
            follow_redirects=True,
            transport=self._transport,
        ) as client:

            async def fetch_one(url: str) -> list[Track]:
                logger.info(f"Fetching playlist {url}")
                try:
                    return await self.parser.fetch(client, url)
                except httpx.HTTPError as e:
                    logger.error(f"Failed to fetch playlist {url}: {e}")
                    return []

            return await asyncio.gather(*[fetch_one(url) for url in self.settings.iptv_playlists])

    async def probe_all(self, tracks: list[Track]) -> list[ProbeResult]:
        """Probe tracks with at most probe_concurrency ffprobe processes at once."""
        semaphore = asyncio.Semaphore(self.settings.probe_concurrency)

        async def probe_with_sem(track: Track) -> ProbeResult:
            async with semaphore:
                return await self.prober.probe(track)

        return await asyncio.gather(*[probe_with_sem(t) for t in tracks])

    async def run(self) -> ChannelCatalog:
        """Fetch, dedupe, probe, number, persist. Returns the new catalog."""
        if not self.settings.iptv_playlists:
            raise ConfigurationError("No IPTV playlists configured (iptv_playlists is empty)")

        playlists = await self.fetch_playlists()
        tracks = dedupe_tracks(playlists)
        logger.info(f"Probing {len(tracks)} unique streams from {len(playlists)} playlists")

        results = await self.probe_all(tracks)
        working = sum(1 for r in results if r.ok)
        logger.info(f"Probe complete: {working}/{len(results)} working")

        ordered = assign_channel_numbers(results)
        check_unique_channel_numbers(ordered)

        catalog = ChannelCatalog(date=datetime.now(timezone.utc), results=ordered)
        await self.store.save_catalog(catalog)
        logger.info(f"📺 Channel catalog stored with {len(ordered)} entries")
        return catalog

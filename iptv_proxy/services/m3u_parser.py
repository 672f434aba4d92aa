"""
M3U Parser Service.
Parses extended M3U playlists into Track records.
"""
import re
from typing import Optional
import logging

import httpx

from iptv_proxy.models.channel import Track, TrackMetadata

logger = logging.getLogger(__name__)

# key="value" pairs on an EXTINF line
ATTRIBUTE_PATTERN = re.compile(r'([A-Za-z0-9_-]+)="([^"]*)"')


class M3UParser:
    """Parse M3U playlist text."""

    def parse(self, content: str) -> list[Track]:
        """
        Parse playlist text and return its tracks in playlist order.

        Lines that are neither directives nor URLs are ignored. A URL without
        a preceding #EXTINF still yields an (untitled) track.
        """
        tracks = []
        pending = self._empty_entry()

        for line in content.splitlines():
            line = line.strip()
            if not line:
                continue

            if line.startswith('#EXTINF:'):
                attributes, title = self._parse_extinf(line[len('#EXTINF:'):])
                pending['attributes'].update(attributes)
                pending['title'] = title
            elif line.startswith('#EXTGRP:'):
                pending['group'] = line[len('#EXTGRP:'):].strip() or None
            elif line.startswith('#EXTGENRE:'):
                pending['genre'] = line[len('#EXTGENRE:'):].strip() or None
            elif line.startswith('#EXTIMG:'):
                pending['image'] = line[len('#EXTIMG:'):].strip() or None
            elif line.startswith('#EXTVLCOPT:'):
                option = line[len('#EXTVLCOPT:'):]
                if '=' in option:
                    key, value = option.split('=', 1)
                    pending['attributes'][key.strip()] = value.strip()
            elif line.startswith('#'):
                continue
            else:
                tracks.append(self._build_track(line, pending))
                pending = self._empty_entry()

        return tracks

    async def fetch(self, client: httpx.AsyncClient, url: str) -> list[Track]:
        """Download and parse a remote playlist. HTTP errors propagate."""
        response = await client.get(url)
        response.raise_for_status()
        tracks = self.parse(response.text)
        logger.info(f"Parsed {len(tracks)} tracks from {url}")
        return tracks

    @staticmethod
    def _empty_entry() -> dict:
        return {'attributes': {}, 'title': None, 'group': None, 'genre': None, 'image': None}

    @staticmethod
    def _parse_extinf(body: str) -> tuple[dict[str, str], Optional[str]]:
        """Split `-1 tvg-id="x" group-title="a, b",Title` into attributes and title."""
        in_quotes = False
        split_at = -1
        for i, char in enumerate(body):
            if char == '"':
                in_quotes = not in_quotes
            elif char == ',' and not in_quotes:
                split_at = i
                break

        if split_at == -1:
            head, title = body, None
        else:
            head, title = body[:split_at], body[split_at + 1:].strip() or None

        attributes = dict(ATTRIBUTE_PATTERN.findall(head))
        return attributes, title

    @staticmethod
    def _build_track(url: str, entry: dict) -> Track:
        metadata = TrackMetadata.from_attributes(entry['attributes'])
        return Track(
            url=url,
            title=entry['title'],
            genre=entry['genre'],
            image=entry['image'],
            group=entry['group'] or metadata.group_title,
            metadata=metadata,
        )

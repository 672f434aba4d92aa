"""
Pytest configuration and fixtures for IPTV proxy tests.
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from iptv_proxy.config import Settings
from iptv_proxy.models.channel import (
    UNASSIGNED,
    ProbeData,
    ProbeFailure,
    ProbeFailureReason,
    ProbeParameters,
    ProbeSuccess,
    Track,
    TrackMetadata,
)
from iptv_proxy.services.store import DocumentStore


NOW = datetime(2025, 12, 12, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    """Fixed 'now' for guide matching tests."""
    return NOW


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the environment and any local config file."""
    return Settings(
        database_path=str(tmp_path / "test.db"),
        iptv_playlists=["http://playlists.test/a.m3u"],
        epg_sources=[],
    )


@pytest_asyncio.fixture
async def store(tmp_path):
    """Initialized document store in a temp directory."""
    store = DocumentStore(str(tmp_path / "store.db"))
    await store.initialize()
    return store


@pytest.fixture
def sample_m3u_content():
    """Sample M3U content for testing."""
    return """#EXTM3U
#EXTINF:-1 tvg-id="Rai1.it" tvg-chno="1" tvg-logo="http://logos.test/rai1.png" group-title="Generalisti, HD",Rai 1
#EXTGRP:Nazionali
#EXTVLCOPT:http-user-agent=Mozilla/5.0
#EXTVLCOPT:http-referrer=http://referer.test/
http://example.com/rai1.m3u8
#EXTINF:-1 tvg-id="Rai2.it" tvg-chno="2",Rai 2
http://example.com/rai2.m3u8
#EXTINF:-1,Channel Without ID
#EXTGENRE:News
#EXTIMG:http://images.test/news.png
http://example.com/no-id.m3u8
"""


@pytest.fixture
def sample_epg_xml():
    """Sample XMLTV EPG content for testing."""
    return """<?xml version="1.0" encoding="UTF-8"?>
<tv date="20251212000000 +0000" generator-info-name="test-grabber">
    <channel id="Rai1.it">
        <display-name lang="it">Rai 1</display-name>
        <icon src="https://example.com/rai1.png" width="100" height="50"/>
    </channel>
    <channel id="rai2">
        <display-name>Rai 2</display-name>
    </channel>
    <programme start="20251212110000 +0000" stop="20251212120000 +0000" channel="Rai1.it">
        <title lang="it">TG1</title>
        <desc>Daily news broadcast</desc>
        <category>News</category>
        <episode-num system="onscreen">S1E1</episode-num>
    </programme>
    <programme start="20251212120000 +0000" stop="20251212130000 +0000" channel="Rai1.it">
        <title>Weather Update</title>
    </programme>
    <programme start="20251212120000 +0000" stop="20251212140000 +0000" channel="rai2">
        <title>Film</title>
    </programme>
    <programme start="garbage" channel="rai2">
        <title>Broken</title>
    </programme>
</tv>
"""


@pytest.fixture
def make_track():
    """Factory for Track instances."""
    def _make(url="http://example.com/stream.m3u8", title="Channel", **metadata):
        return Track(url=url, title=title, metadata=TrackMetadata(**metadata))
    return _make


def _probe_data(width=1280, audio_codec="aac", audio_profile="LC"):
    return ProbeData.model_validate({
        "streams": [
            {"index": 0, "codec_type": "video", "codec_name": "h264", "width": width, "height": width * 9 // 16},
            {"index": 1, "codec_type": "audio", "codec_name": audio_codec, "profile": audio_profile},
        ],
        "format": {"format_name": "hls", "nb_streams": 2},
    })


@pytest.fixture
def make_success(make_track):
    """Factory for ProbeSuccess results."""
    def _make(name, number=UNASSIGNED, url=None, track=None, **probe):
        track = track or make_track(url=url or f"http://example.com/{name}.m3u8", title=name)
        return ProbeSuccess(
            channel_number=number,
            channel_name=name,
            params=ProbeParameters(track=track, timeout=60, user_agent="test"),
            metadata=_probe_data(**probe),
        )
    return _make


@pytest.fixture
def make_failure(make_track):
    """Factory for ProbeFailure results."""
    def _make(name, number=UNASSIGNED, reason=ProbeFailureReason.TIMEOUT):
        track = make_track(url=f"http://example.com/{name}.m3u8", title=name)
        return ProbeFailure(
            channel_number=number,
            channel_name=name,
            params=ProbeParameters(track=track, timeout=60, user_agent="test"),
            reason=reason,
            error="failed",
        )
    return _make


@pytest.fixture
def guide_times(now):
    """Helper giving instants relative to the fixed now."""
    def _at(hours: float) -> datetime:
        return now + timedelta(hours=hours)
    return _at


class FakeStream:
    """Minimal asyncio.StreamReader stand-in."""

    def __init__(self, chunks=(), block=False):
        self._chunks = list(chunks)
        self._block = block

    async def read(self, n=-1):
        if self._chunks:
            return self._chunks.pop(0)
        if self._block:
            await asyncio.Event().wait()
        return b""


class FakeProcess:
    """Stands in for asyncio.subprocess.Process."""

    def __init__(self, stdout=b"", stderr=b"", returncode=0, hang=False, chunks=None, block=False,
                 stderr_chunks=None):
        self._stdout = stdout
        self._stderr = stderr
        self._final_returncode = returncode
        self._hang = hang
        self.pid = 4242
        self.returncode = None
        self.killed = False
        self.stdout = FakeStream(chunks or [], block=block)
        self.stderr = FakeStream(stderr_chunks or [])

    async def communicate(self):
        if self._hang:
            await asyncio.Event().wait()
        self.returncode = self._final_returncode
        return self._stdout, self._stderr

    async def wait(self):
        return self.returncode

    def kill(self):
        self.killed = True
        self.returncode = -9


@pytest.fixture
def fake_process():
    """Factory for fake subprocesses."""
    return FakeProcess

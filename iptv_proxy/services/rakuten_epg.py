"""
Rakuten TV guide adapter.
Builds a GuideDocument from Rakuten's public live channel JSON API.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode

import httpx
import pycountry
from pydantic import BaseModel, Field, field_validator

from iptv_proxy.config import RakutenEpgSettings
from iptv_proxy.models.epg import (
    GuideChannel,
    GuideDocument,
    GuideEpisodeNum,
    GuideIcon,
    GuideImage,
    GuideProgramme,
    GuideText,
)
from iptv_proxy.services.epg_parser import escape_html

logger = logging.getLogger(__name__)

BASE_URL = "https://gizmo.rakuten.tv/v3/live_channels"
GENERATOR_NAME = "iptv-proxy"
WINDOW = timedelta(hours=72)
PER_PAGE = 250


# API schema: only the fields we use are required, so provider additions don't break parsing

class RakutenLabel(BaseModel):
    type: str
    id: str
    numerical_id: int
    name: str


class RakutenLabels(BaseModel):
    tags: Optional[list[RakutenLabel]] = None
    languages: Optional[list[RakutenLabel]] = None


class RakutenChannelImages(BaseModel):
    artwork: Optional[str] = None
    artwork_negative: Optional[str] = None
    snapshot: Optional[str] = None


class RakutenProgramImages(BaseModel):
    snapshot: Optional[str] = None


class RakutenProgram(BaseModel):
    type: str
    numerical_id: int
    id: str
    title: str
    subtitle: Optional[str] = None
    description: str
    is_live: bool
    starts_at: datetime
    ends_at: datetime
    images: RakutenProgramImages
    episode_id: Optional[str] = None
    season_id: Optional[str] = None
    movie_id: Optional[str] = None

    @field_validator("starts_at", "ends_at")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        """Timestamps without an offset are UTC."""
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class RakutenChannel(BaseModel):
    type: str
    id: str
    numerical_id: int
    title: str
    channel_number: int
    images: Optional[RakutenChannelImages] = None
    labels: Optional[RakutenLabels] = None
    live_programs: list[RakutenProgram] = Field(default_factory=list)


class RakutenPagination(BaseModel):
    page: int
    count: int
    per_page: int
    offset: int
    total_pages: int


class RakutenMeta(BaseModel):
    pagination: RakutenPagination


class RakutenResponse(BaseModel):
    data: list[RakutenChannel]
    meta: RakutenMeta


def to_iso639_1(code: Optional[str]) -> str:
    """Map an ISO 639-2 code (terminologic or bibliographic) to ISO 639-1, defaulting to 'en'."""
    if not code:
        return "en"
    code = code.lower()
    if code == "zxx":
        # "no linguistic content"
        return "en"
    language = pycountry.languages.get(alpha_3=code) or pycountry.languages.get(bibliographic=code)
    return getattr(language, "alpha_2", None) or "en"


class RakutenGuideAdapter:
    """Pages through Rakuten's live channel listing and maps it to XMLTV shape."""

    def __init__(
        self,
        settings: RakutenEpgSettings,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.timeout = timeout
        self._transport = transport

    def build_url(self, window_start: datetime, page: int) -> str:
        window_end = window_start + WINDOW
        params = {
            "device_identifier": "web",
            "device_stream_audio_quality": "2.0",
            "device_stream_hdr_type": "NONE",
            "device_stream_video_quality": "FHD",
            "epg_duration_minutes": "360",
            "per_page": str(PER_PAGE),
            "page": str(page),
            "epg_starts_at": window_start.isoformat().replace("+00:00", "Z"),
            "epg_starts_at_timestamp": str(int(window_start.timestamp() * 1000)),
            "epg_ends_at": window_end.isoformat().replace("+00:00", "Z"),
            "epg_ends_at_timestamp": str(int(window_end.timestamp() * 1000)),
            "classification_id": str(self.settings.classification_id),
            "locale": self.settings.locale,
            "market_code": self.settings.market_code,
        }
        # urlencode quotes ':' as %3A, which the API expects
        return f"{BASE_URL}?{urlencode(params)}"

    async def fetch_channels(self, now: Optional[datetime] = None) -> list[RakutenChannel]:
        """Fetch every page of the listing. HTTP and schema errors propagate."""
        now = now or datetime.now(timezone.utc)
        window_start = now.replace(hour=0, minute=0, second=0, microsecond=0)

        channels = []
        page = 1
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            while True:
                response = await client.get(self.build_url(window_start, page))
                response.raise_for_status()
                parsed = RakutenResponse.model_validate_json(response.content)
                channels.extend(parsed.data)

                total_pages = parsed.meta.pagination.total_pages
                logger.debug(f"Rakuten page {page}/{total_pages}: {len(parsed.data)} channels")
                if page >= total_pages or not parsed.data:
                    break
                page += 1
        return channels

    async def generate(self, now: Optional[datetime] = None) -> Optional[GuideDocument]:
        """Build the Rakuten guide, or None when the adapter is disabled."""
        if not self.settings.enabled:
            logger.info("Rakuten EPG generation disabled")
            return None

        logger.info("Rakuten EPG generation enabled, starting")
        channels = await self.fetch_channels(now)
        document = to_guide_document(channels, now)
        logger.info(
            f"Rakuten EPG generation finished: {len(document.channels)} channels,"
            f" {len(document.programmes)} programmes"
        )
        return document


def to_guide_document(channels: list[RakutenChannel], now: Optional[datetime] = None) -> GuideDocument:
    """Map Rakuten channels and their live programmes into a GuideDocument."""
    document = GuideDocument(
        date=now or datetime.now(timezone.utc),
        generator_info_name=GENERATOR_NAME,
        source=BASE_URL,
    )

    for channel in channels:
        languages = channel.labels.languages if channel.labels else None
        lang = to_iso639_1(languages[0].id if languages else None)

        guide_channel = GuideChannel(
            id=channel.id,
            display_names=[GuideText(value=escape_html(channel.title), lang=lang)],
        )
        icon = channel.images and (channel.images.artwork_negative or channel.images.artwork)
        if icon:
            guide_channel.icons = [GuideIcon(src=icon)]
        document.channels.append(guide_channel)

        tags = channel.labels.tags if channel.labels else None
        for program in channel.live_programs:
            programme = GuideProgramme(
                channel=channel.id,
                start=program.starts_at,
                stop=program.ends_at,
                titles=[GuideText(value=escape_html(program.title), lang=lang)],
                descs=[GuideText(value=escape_html(program.description), lang=lang)],
                language=GuideText(value=lang, lang=lang),
            )
            if program.subtitle:
                programme.sub_titles = [GuideText(value=escape_html(program.subtitle), lang=lang)]
            if tags:
                categories = ", ".join(t.name for t in tags)
                programme.categories = [GuideText(value=escape_html(categories), lang=lang)]
            if program.images.snapshot:
                programme.images = [GuideImage(value=program.images.snapshot, type="still")]
            if program.episode_id:
                programme.episode_nums = [
                    GuideEpisodeNum(value=escape_html(program.episode_id), system="onscreen")
                ]
            document.programmes.append(programme)

    return document

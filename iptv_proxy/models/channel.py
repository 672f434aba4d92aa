"""
Track, probe result and channel catalog models.
"""
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# Channel number of a track with no usable hint
UNASSIGNED = -1

CATALOG_VERSION = 1


class TrackMetadata(BaseModel):
    """Known playlist attributes of a track, plus whatever else the playlist carried."""
    tvg_id: Optional[str] = None
    tvg_chno: Optional[str] = None
    tvg_logo: Optional[str] = None
    tvg_name: Optional[str] = None
    group_title: Optional[str] = None
    http_referrer: Optional[str] = None
    http_user_agent: Optional[str] = None
    extra: dict[str, str] = Field(default_factory=dict)

    # playlist attribute name -> field name
    KNOWN_ATTRIBUTES: ClassVar[dict[str, str]] = {
        "tvg-id": "tvg_id",
        "tvg-chno": "tvg_chno",
        "tvg-logo": "tvg_logo",
        "tvg-name": "tvg_name",
        "group-title": "group_title",
        "http-referrer": "http_referrer",
        "http-user-agent": "http_user_agent",
    }

    @classmethod
    def from_attributes(cls, attributes: dict[str, str]) -> "TrackMetadata":
        known = {}
        extra = {}
        for name, value in attributes.items():
            field = cls.KNOWN_ATTRIBUTES.get(name.lower())
            if field:
                known[field] = value
            else:
                extra[name] = value
        return cls(**known, extra=extra)


class Track(BaseModel):
    """A candidate stream parsed from a playlist."""
    url: str
    title: Optional[str] = None
    genre: Optional[str] = None
    image: Optional[str] = None
    group: Optional[str] = None
    metadata: TrackMetadata = Field(default_factory=TrackMetadata)

    model_config = ConfigDict(frozen=True)


class ProbeParameters(BaseModel):
    """Parameters used to run one ffprobe."""
    track: Track
    timeout: float
    user_agent: str
    http_referer: Optional[str] = None


class ProbeStream(BaseModel):
    """One elementary stream as reported by ffprobe."""
    index: int
    codec_name: Optional[str] = None
    codec_long_name: Optional[str] = None
    codec_type: Optional[str] = None
    codec_tag_string: Optional[str] = None
    profile: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    coded_width: Optional[int] = None
    coded_height: Optional[int] = None
    pix_fmt: Optional[str] = None
    level: Optional[int] = None
    r_frame_rate: Optional[str] = None
    avg_frame_rate: Optional[str] = None
    field_order: Optional[str] = None
    sample_fmt: Optional[str] = None
    sample_rate: Optional[str] = None
    channels: Optional[int] = None
    channel_layout: Optional[str] = None
    bit_rate: Optional[str] = None
    start_time: Optional[str] = None
    duration: Optional[str] = None
    disposition: dict[str, Any] = Field(default_factory=dict)
    tags: dict[str, Union[str, int]] = Field(default_factory=dict)

    @property
    def is_hd(self) -> bool:
        return self.codec_type == "video" and (
            (self.width or 0) >= 1920 or (self.coded_width or 0) >= 1920
        )


class ProbeFormat(BaseModel):
    """Container information as reported by ffprobe."""
    filename: Optional[str] = None
    nb_streams: Optional[int] = None
    nb_programs: Optional[int] = None
    format_name: Optional[str] = None
    format_long_name: Optional[str] = None
    start_time: Optional[str] = None
    duration: Optional[str] = None
    size: Optional[str] = None
    bit_rate: Optional[str] = None
    probe_score: Optional[int] = None
    tags: dict[str, Union[str, int]] = Field(default_factory=dict)


class ProbeData(BaseModel):
    """Validated `ffprobe -show_streams -show_format` output."""
    streams: list[ProbeStream]
    format: ProbeFormat


class ProbeFailureReason(str, Enum):
    TIMEOUT = "timeout"
    SPAWN_FAILED = "spawn_failed"
    EXIT_STATUS = "exit_status"
    INVALID_OUTPUT = "invalid_output"
    NO_STREAMS = "no_streams"


class _ProbeOutcome(BaseModel):
    channel_number: int = UNASSIGNED
    channel_name: str
    params: ProbeParameters

    @property
    def track(self) -> Track:
        return self.params.track

    @property
    def has_channel_number(self) -> bool:
        return self.channel_number != UNASSIGNED


class ProbeSuccess(_ProbeOutcome):
    ok: Literal[True] = True
    metadata: ProbeData

    @property
    def is_hd(self) -> bool:
        return any(stream.is_hd for stream in self.metadata.streams)

    def audio_streams(self) -> list[ProbeStream]:
        return [s for s in self.metadata.streams if s.codec_type == "audio"]


class ProbeFailure(_ProbeOutcome):
    ok: Literal[False] = False
    reason: ProbeFailureReason
    error: str


ProbeResult = Union[ProbeSuccess, ProbeFailure]


class ChannelCatalog(BaseModel):
    """The numbered lineup produced by a probe run."""
    version: int = CATALOG_VERSION
    date: datetime
    results: list[ProbeResult] = Field(default_factory=list)

    @property
    def successful(self) -> list[ProbeSuccess]:
        return [r for r in self.results if r.ok]

    def find_by_url(self, url: str) -> Optional[ProbeResult]:
        """Get the result whose source URL is exactly `url`."""
        for result in self.results:
            if result.track.url == url:
                return result
        return None

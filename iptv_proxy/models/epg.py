"""
EPG (Electronic Program Guide) data models.
Mirrors the XMLTV document structure.
"""
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


class GuideText(BaseModel):
    """A text element with an optional language, e.g. <title lang="en">."""
    value: str
    lang: Optional[str] = None


class GuideIcon(BaseModel):
    src: str
    width: Optional[int] = None
    height: Optional[int] = None


class GuideImage(BaseModel):
    value: str
    type: Optional[str] = None


class GuideEpisodeNum(BaseModel):
    value: str
    system: Optional[str] = None


class GuideChannel(BaseModel):
    """Channel info from EPG data."""
    id: str
    display_names: list[GuideText] = Field(default_factory=list)
    icons: list[GuideIcon] = Field(default_factory=list)
    urls: list[str] = Field(default_factory=list)

    @property
    def first_display_name(self) -> Optional[str]:
        return self.display_names[0].value if self.display_names else None


class GuideProgramme(BaseModel):
    """TV programme from EPG data."""
    channel: str
    start: datetime
    stop: Optional[datetime] = None
    titles: list[GuideText] = Field(default_factory=list)
    sub_titles: list[GuideText] = Field(default_factory=list)
    descs: list[GuideText] = Field(default_factory=list)
    categories: list[GuideText] = Field(default_factory=list)
    icons: list[GuideIcon] = Field(default_factory=list)
    images: list[GuideImage] = Field(default_factory=list)
    episode_nums: list[GuideEpisodeNum] = Field(default_factory=list)
    language: Optional[GuideText] = None

    @property
    def duration_minutes(self) -> Optional[int]:
        if self.stop is None:
            return None
        return int((self.stop - self.start).total_seconds() / 60)


class GuideDocument(BaseModel):
    """A whole XMLTV feed: channels plus their scheduled programmes."""
    date: Optional[datetime] = None
    generated_ts: Optional[str] = None
    generator_info_name: Optional[str] = None
    source: Optional[str] = None
    channels: list[GuideChannel] = Field(default_factory=list)
    programmes: list[GuideProgramme] = Field(default_factory=list)

    @property
    def effective_date(self) -> datetime:
        """Generation date used to rank feeds; undated feeds rank as the epoch."""
        return self.date or datetime.fromtimestamp(0, tz=timezone.utc)

    def programmes_for(self, channel_id: str) -> list[GuideProgramme]:
        return [p for p in self.programmes if p.channel == channel_id]

"""
EPG Channel Mapping Service.
Matches catalog channels to guide channels across every loaded feed and
merges the winners into one guide keyed by tuner channel number.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from iptv_proxy.config import Settings
from iptv_proxy.models.channel import UNASSIGNED, ProbeResult, ProbeSuccess, Track
from iptv_proxy.models.epg import (
    GuideChannel,
    GuideDocument,
    GuideIcon,
    GuideImage,
    GuideProgramme,
    GuideText,
)
from iptv_proxy.services.epg_parser import escape_html, write_xmltv
from iptv_proxy.services.guide_sources import GuideSourceLoader
from iptv_proxy.services.store import DocumentStore

logger = logging.getLogger(__name__)

GENERATOR_NAME = "iptv-proxy"
UNKNOWN_CHANNEL = "UNKNOWN CHANNEL"


class CatalogNotFoundError(LookupError):
    """Guide generation was requested before any channel catalog exists."""

    def __init__(self):
        super().__init__("No channel catalog found, run the channel probe first")


@dataclass
class GuideMatch:
    """A guide channel that passed elaboration, with its programmes."""
    channel: GuideChannel
    programmes: list[GuideProgramme]
    guide_date: datetime
    first_programme_start: datetime
    last_programme_start: datetime


class EPGMapper:
    """Maps catalog channels to guide channels and builds the merged guide."""

    # A channel whose last programme started longer ago than this is stale
    STALE_AFTER = timedelta(hours=3)
    # A channel whose first programme starts further ahead than this has no near-term guide
    LOOKAHEAD = timedelta(hours=6)
    # Duration of the placeholder programme for unmatched channels
    FILLER_DURATION = timedelta(days=3)

    def __init__(self, now: Optional[datetime] = None):
        self._now = now

    @property
    def now(self) -> datetime:
        return self._now or datetime.now(timezone.utc)

    def elaborate_match(
        self, guide: GuideDocument, channel: Optional[GuideChannel]
    ) -> Optional[GuideMatch]:
        """Turn a raw channel match into a GuideMatch, or None if its schedule is unusable."""
        if channel is None:
            return None

        programmes = guide.programmes_for(channel.id)
        if not programmes:
            return None

        first_start = min(p.start for p in programmes)
        last_start = max(p.start for p in programmes)
        now = self.now

        if last_start < now - self.STALE_AFTER:
            return None
        if first_start > now + self.LOOKAHEAD:
            return None

        return GuideMatch(
            channel=channel,
            programmes=programmes,
            guide_date=guide.effective_date,
            first_programme_start=first_start,
            last_programme_start=last_start,
        )

    @staticmethod
    def _find_channel(guide: GuideDocument, key: str) -> Optional[GuideChannel]:
        for channel in guide.channels:
            if channel.id == key or channel.first_display_name == key:
                return channel
        return None

    def match_track(self, guides: list[GuideDocument], track: Track) -> list[GuideMatch]:
        """
        Find usable guide matches for a track across all guides.

        Per guide the tvg-id is tried first, then the title when no channel
        carried the tvg-id. Returned matches are ordered by programme count,
        largest first; ties keep the order of the guides.
        """
        matches = []
        for guide in guides:
            found = None
            if track.metadata.tvg_id:
                found = self._find_channel(guide, track.metadata.tvg_id)
                match = self.elaborate_match(guide, found)
                if match:
                    matches.append(match)

            if found is None and track.title:
                found = self._find_channel(guide, track.title)
                match = self.elaborate_match(guide, found)
                if match:
                    matches.append(match)

        matches.sort(key=lambda m: len(m.programmes), reverse=True)
        return matches

    def merge_match(self, result: ProbeSuccess, match: GuideMatch) -> tuple[GuideChannel, list[GuideProgramme]]:
        """Copy a matched channel and its programmes, renumbered to the catalog channel."""
        channel = match.channel.model_copy(deep=True)
        programmes = [p.model_copy(deep=True) for p in match.programmes]

        logo = result.track.metadata.tvg_logo
        if logo and not channel.icons:
            channel.icons = [GuideIcon(src=logo)]

        if result.channel_number != UNASSIGNED:
            number = str(result.channel_number)
            channel.id = number
            for programme in programmes:
                programme.channel = number
        return channel, programmes

    def synthesize(self, result: ProbeSuccess) -> tuple[GuideChannel, GuideProgramme]:
        """Placeholder channel with a single long programme named after the track."""
        track = result.track
        number = str(result.channel_number)
        title = escape_html(track.title or UNKNOWN_CHANNEL)
        start = self.now

        channel = GuideChannel(id=number, display_names=[GuideText(value=title)])
        programme = GuideProgramme(
            channel=number,
            start=start,
            stop=start + self.FILLER_DURATION,
            titles=[GuideText(value=title)],
        )
        if track.genre:
            programme.categories = [GuideText(value=escape_html(track.genre))]
        if track.image:
            programme.images = [GuideImage(value=track.image, type="poster")]
        return channel, programme

    def build_guide(self, results: list[ProbeResult], guides: list[GuideDocument]) -> GuideDocument:
        """Build the merged guide for every successful catalog entry, in catalog order."""
        generated = GuideDocument(date=self.now, generator_info_name=GENERATOR_NAME)
        valid = [r for r in results if r.ok]

        for result in valid:
            track = result.track
            label = f"[{result.channel_number}] {track.metadata.group_title or ''} {track.title or UNKNOWN_CHANNEL}"
            matches = self.match_track(guides, track)

            if matches:
                best = matches[0]
                channel, programmes = self.merge_match(result, best)
                generated.channels.append(channel)
                generated.programmes.extend(programmes)
                logger.info(
                    f"{label}: matched channel added to EPG guide (guide of {best.guide_date:%Y-%m-%d %H:%M}, "
                    f"programmes {best.first_programme_start:%Y-%m-%d %H:%M} to {best.last_programme_start:%Y-%m-%d %H:%M})"
                )
            elif result.channel_number != UNASSIGNED:
                channel, programme = self.synthesize(result)
                generated.channels.append(channel)
                generated.programmes.append(programme)
                logger.info(f"{label}: unmatched channel added to EPG guide")

        logger.info(f"Generated EPG with {len(generated.channels)}/{len(valid)} channels")
        return generated


async def generate_epg(
    settings: Settings,
    store: DocumentStore,
    loader: Optional[GuideSourceLoader] = None,
    mapper: Optional[EPGMapper] = None,
) -> GuideDocument:
    """
    Regenerate and store the EPG from the stored catalog.

    Raises:
        CatalogNotFoundError: if no catalog has been generated yet
    """
    catalog = await store.load_catalog()
    if catalog is None:
        raise CatalogNotFoundError()

    loader = loader or GuideSourceLoader(settings)
    mapper = mapper or EPGMapper()

    guides = await loader.load_all()
    logger.info(f"Loaded {len(guides)} guide sources")

    guide = mapper.build_guide(catalog.results, guides)
    await store.save_epg(write_xmltv(guide))
    return guide

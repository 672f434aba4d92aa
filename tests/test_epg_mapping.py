"""
Tests for EPG channel mapping: matching, elaboration and guide merge.
"""
import logging
from datetime import timedelta

import pytest

from iptv_proxy.models.channel import UNASSIGNED, ChannelCatalog
from iptv_proxy.models.epg import GuideChannel, GuideDocument, GuideIcon, GuideProgramme, GuideText
from iptv_proxy.services.epg_mapping import CatalogNotFoundError, EPGMapper, generate_epg
from iptv_proxy.services.epg_parser import EPGParser


def guide_with(channel_id, starts, name=None, date=None, icons=None):
    """A guide holding one channel with one-hour programmes at the given starts."""
    return GuideDocument(
        date=date,
        channels=[GuideChannel(
            id=channel_id,
            display_names=[GuideText(value=name or channel_id)],
            icons=icons or [],
        )],
        programmes=[
            GuideProgramme(channel=channel_id, start=s, stop=s + timedelta(hours=1), titles=[GuideText(value="Show")])
            for s in starts
        ],
    )


class TestElaborateMatch:

    def test_missing_channel(self, now):
        assert EPGMapper(now).elaborate_match(GuideDocument(), None) is None

    def test_channel_without_programmes(self, now):
        guide = guide_with("x", [])
        assert EPGMapper(now).elaborate_match(guide, guide.channels[0]) is None

    def test_stale_schedule_rejected(self, now, guide_times):
        guide = guide_with("x", [guide_times(-5), guide_times(-4)])
        assert EPGMapper(now).elaborate_match(guide, guide.channels[0]) is None

    def test_far_future_schedule_rejected(self, now, guide_times):
        guide = guide_with("x", [guide_times(7), guide_times(8)])
        assert EPGMapper(now).elaborate_match(guide, guide.channels[0]) is None

    def test_boundaries_are_accepted(self, now, guide_times):
        """Last start exactly 3h ago and first start exactly 6h ahead both pass."""
        stale_edge = guide_with("x", [guide_times(-4), guide_times(-3)])
        future_edge = guide_with("y", [guide_times(6), guide_times(7)])
        mapper = EPGMapper(now)

        match = mapper.elaborate_match(stale_edge, stale_edge.channels[0])
        assert match is not None
        assert match.last_programme_start == guide_times(-3)

        match = mapper.elaborate_match(future_edge, future_edge.channels[0])
        assert match is not None
        assert match.first_programme_start == guide_times(6)

    def test_unordered_programmes(self, now, guide_times):
        guide = guide_with("x", [guide_times(2), guide_times(-1), guide_times(1)])
        match = EPGMapper(now).elaborate_match(guide, guide.channels[0])
        assert match.first_programme_start == guide_times(-1)
        assert match.last_programme_start == guide_times(2)
        assert len(match.programmes) == 3


class TestMatchTrack:

    def test_tvg_id_matches_id_or_display_name(self, now, guide_times, make_track):
        by_id = guide_with("rai1", [guide_times(0)], name="Rai Uno")
        by_name = guide_with("other", [guide_times(0)], name="rai1")
        mapper = EPGMapper(now)

        matches = mapper.match_track([by_id, by_name], make_track(title="Rai 1", tvg_id="rai1"))

        assert [m.channel.id for m in matches] == ["rai1", "other"]

    def test_title_fallback(self, now, guide_times, make_track):
        guide = guide_with("r1", [guide_times(0)], name="Rai 1")
        matches = EPGMapper(now).match_track([guide], make_track(title="Rai 1", tvg_id="unknown"))
        assert [m.channel.id for m in matches] == ["r1"]

    def test_no_title_fallback_when_tvg_id_found_but_stale(self, now, guide_times, make_track):
        guide = GuideDocument(
            channels=[
                GuideChannel(id="rai1", display_names=[GuideText(value="Rai Uno")]),
                GuideChannel(id="r1", display_names=[GuideText(value="Rai 1")]),
            ],
            programmes=[
                GuideProgramme(channel="rai1", start=guide_times(-10)),
                GuideProgramme(channel="r1", start=guide_times(0)),
            ],
        )
        matches = EPGMapper(now).match_track([guide], make_track(title="Rai 1", tvg_id="rai1"))
        assert matches == []

    def test_stale_feed_loses_to_fresh_feed(self, now, guide_times, make_track):
        """A feed last updated 4h ago is skipped, one starting 1h ago is used."""
        stale = guide_with("rai1", [guide_times(-6), guide_times(-5), guide_times(-4)])
        fresh = guide_with("rai1", [guide_times(-1)])

        matches = EPGMapper(now).match_track([stale, fresh], make_track(title="Rai 1", tvg_id="rai1"))

        assert len(matches) == 1
        assert matches[0].last_programme_start == guide_times(-1)

    def test_most_programmes_first(self, now, guide_times, make_track):
        small = guide_with("rai1", [guide_times(0)])
        large = guide_with("rai1", [guide_times(h) for h in range(5)])
        also_small = guide_with("rai1", [guide_times(1)])

        matches = EPGMapper(now).match_track([small, large, also_small], make_track(tvg_id="rai1"))

        assert [len(m.programmes) for m in matches] == [5, 1, 1]
        # Ties keep guide order
        assert matches[1].first_programme_start == guide_times(0)


class TestBuildGuide:

    def test_every_numbered_success_is_covered(self, now, guide_times, make_success, make_failure, make_track):
        matched = make_success("Rai 1", 1, track=make_track(url="http://example.com/1", title="Rai 1", tvg_id="rai1"))
        unmatched = make_success("Local TV", 2)
        failed = make_failure("Dead", 3)
        guide = guide_with("rai1", [guide_times(0), guide_times(1)])

        generated = EPGMapper(now).build_guide([matched, unmatched, failed], [guide])

        assert [c.id for c in generated.channels] == ["1", "2"]
        assert {p.channel for p in generated.programmes} == {"1", "2"}
        assert generated.generator_info_name == "iptv-proxy"
        assert generated.date == now

    def test_matched_channel_is_renumbered_copy(self, now, guide_times, make_success, make_track):
        result = make_success("Rai 1", 7, track=make_track(
            url="http://example.com/1", title="Rai 1", tvg_id="rai1", tvg_logo="http://logos.test/rai1.png",
        ))
        guide = guide_with("rai1", [guide_times(0)])

        generated = EPGMapper(now).build_guide([result], [guide])

        assert generated.channels[0].id == "7"
        assert generated.channels[0].icons == [GuideIcon(src="http://logos.test/rai1.png")]
        assert generated.programmes[0].channel == "7"
        # Source guide untouched
        assert guide.channels[0].id == "rai1"
        assert guide.channels[0].icons == []
        assert guide.programmes[0].channel == "rai1"

    def test_existing_icon_is_kept(self, now, guide_times, make_success, make_track):
        result = make_success("Rai 1", 1, track=make_track(title="Rai 1", tvg_id="rai1", tvg_logo="http://logos.test/x.png"))
        guide = guide_with("rai1", [guide_times(0)], icons=[GuideIcon(src="http://guide.test/rai1.png")])

        generated = EPGMapper(now).build_guide([result], [guide])
        assert [i.src for i in generated.channels[0].icons] == ["http://guide.test/rai1.png"]

    def test_matched_channel_logs_guide_dates(self, now, guide_times, make_success, make_track, caplog):
        caplog.set_level(logging.INFO, logger="iptv_proxy.services.epg_mapping")
        result = make_success("Rai 1", 1, track=make_track(title="Rai 1", tvg_id="rai1"))
        guide = guide_with("rai1", [guide_times(2), guide_times(-1)], date=guide_times(-6))

        EPGMapper(now).build_guide([result], [guide])

        assert (
            "matched channel added to EPG guide (guide of 2025-12-12 06:00, "
            "programmes 2025-12-12 11:00 to 2025-12-12 14:00)"
        ) in caplog.text

    def test_synthetic_fallback(self, now, make_success, make_track):
        track = make_track(url="http://example.com/x", title="Tom & Jerry <TV>")
        track = track.model_copy(update={"genre": "Kids", "image": "http://images.test/tj.png"})
        result = make_success("Tom & Jerry <TV>", 4, track=track)

        generated = EPGMapper(now).build_guide([result], [])

        channel = generated.channels[0]
        programme = generated.programmes[0]
        assert channel.id == "4"
        assert channel.first_display_name == "Tom &amp; Jerry &lt;TV&gt;"
        assert programme.titles[0].value == "Tom &amp; Jerry &lt;TV&gt;"
        assert programme.start == now
        assert programme.stop == now + timedelta(days=3)
        assert programme.categories[0].value == "Kids"
        assert programme.images[0].type == "poster"

    def test_untitled_fallback(self, now, make_success, make_track):
        result = make_success("untitled channel", 9, track=make_track(title=None))
        generated = EPGMapper(now).build_guide([result], [])
        assert generated.channels[0].first_display_name == "UNKNOWN CHANNEL"

    def test_unassigned_match_keeps_source_ids(self, now, guide_times, make_success, make_track):
        matched = make_success("Rai 1", UNASSIGNED, track=make_track(title="Rai 1", tvg_id="rai1"))
        unmatched = make_success("Other", UNASSIGNED)
        guide = guide_with("rai1", [guide_times(0)])

        generated = EPGMapper(now).build_guide([matched, unmatched], [guide])

        assert [c.id for c in generated.channels] == ["rai1"]


class TestGenerateEpg:

    @pytest.mark.asyncio
    async def test_requires_catalog(self, settings, store):
        with pytest.raises(CatalogNotFoundError, match="run the channel probe first"):
            await generate_epg(settings, store)

    @pytest.mark.asyncio
    async def test_stores_xmltv(self, settings, store, now, guide_times, make_success, make_track):
        result = make_success("Rai 1", 1, track=make_track(title="Rai 1", tvg_id="rai1"))
        await store.save_catalog(ChannelCatalog(date=now, results=[result]))

        class StubLoader:
            async def load_all(self):
                return [guide_with("rai1", [guide_times(0)])]

        guide = await generate_epg(settings, store, loader=StubLoader(), mapper=EPGMapper(now))

        assert [c.id for c in guide.channels] == ["1"]
        stored = EPGParser().parse((await store.load_epg()).encode("utf-8"))
        assert [c.id for c in stored.channels] == ["1"]
        assert stored.programmes[0].start == guide_times(0)

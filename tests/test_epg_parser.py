"""
Tests for EPG parser service.
"""
import xml.etree.ElementTree as ET
from datetime import datetime, timedelta, timezone

import pytest

from iptv_proxy.models.epg import GuideChannel, GuideDocument, GuideProgramme, GuideText
from iptv_proxy.services.epg_parser import (
    EPGParser,
    escape_html,
    format_xmltv_date,
    parse_xmltv_date,
    write_xmltv,
)


class TestEPGParser:
    """Test suite for EPG parsing functionality."""

    def test_parse_channels(self, sample_epg_xml):
        document = EPGParser().parse(sample_epg_xml, source="http://guides.test/it.xml")

        assert document.source == "http://guides.test/it.xml"
        assert document.generator_info_name == "test-grabber"
        assert document.date == datetime(2025, 12, 12, tzinfo=timezone.utc)

        assert [c.id for c in document.channels] == ["Rai1.it", "rai2"]
        rai1 = document.channels[0]
        assert rai1.first_display_name == "Rai 1"
        assert rai1.display_names[0].lang == "it"
        assert rai1.icons[0].src == "https://example.com/rai1.png"
        assert rai1.icons[0].width == 100

    def test_parse_programmes(self, sample_epg_xml):
        """Test parsing extracts programme data and skips malformed ones."""
        document = EPGParser().parse(sample_epg_xml)

        # The programme with a garbage start is skipped
        assert len(document.programmes) == 3

        tg1 = document.programmes[0]
        assert tg1.channel == "Rai1.it"
        assert tg1.titles[0].value == "TG1"
        assert tg1.titles[0].lang == "it"
        assert tg1.descs[0].value == "Daily news broadcast"
        assert tg1.categories[0].value == "News"
        assert tg1.episode_nums[0].system == "onscreen"
        assert tg1.duration_minutes == 60

        assert len(document.programmes_for("rai2")) == 1

    def test_parse_bytes(self, sample_epg_xml):
        document = EPGParser().parse(sample_epg_xml.encode("utf-8"))
        assert len(document.channels) == 2

    def test_rejects_non_xmltv(self):
        with pytest.raises(ValueError):
            EPGParser().parse("<html><body>not a guide</body></html>")

    def test_rejects_malformed_xml(self):
        with pytest.raises(ET.ParseError):
            EPGParser().parse("<tv><channel></tv>")

    def test_generated_ts_is_kept(self):
        document = EPGParser().parse('<tv generated-ts="1734000000"></tv>')
        assert document.date is None
        assert document.generated_ts == "1734000000"


class TestXMLTVDates:

    def test_parse_with_offset(self):
        parsed = parse_xmltv_date("20251212040000 +0100")
        assert parsed.utcoffset() == timedelta(hours=1)
        assert parsed.astimezone(timezone.utc).hour == 3

    def test_parse_without_offset_is_utc(self):
        assert parse_xmltv_date("20251212040000") == datetime(2025, 12, 12, 4, tzinfo=timezone.utc)

    def test_parse_short_forms(self):
        assert parse_xmltv_date("202512120400") == datetime(2025, 12, 12, 4, tzinfo=timezone.utc)
        assert parse_xmltv_date("20251212") == datetime(2025, 12, 12, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", ["", "2025", "garbage"])
    def test_parse_invalid(self, value):
        with pytest.raises(ValueError):
            parse_xmltv_date(value)

    def test_format(self):
        value = datetime(2025, 12, 12, 4, 30, tzinfo=timezone.utc)
        assert format_xmltv_date(value) == "20251212043000 +0000"


class TestEscapeHtml:

    def test_escapes_all_special_characters(self):
        escaped = escape_html("""Tom & Jerry <"live"> 'now'""")
        assert escaped == "Tom &amp; Jerry &lt;&quot;live&quot;&gt; &#039;now&#039;"

    @pytest.mark.parametrize("value", ["a&b", "<b>", "\"'", "R&D <news> 'x' \"y\""])
    def test_no_raw_special_characters_left(self, value):
        escaped = escape_html(value)
        # Strip the entities we produce, nothing special may remain
        for entity in ("&amp;", "&lt;", "&gt;", "&quot;", "&#039;"):
            escaped = escaped.replace(entity, "")
        assert not any(c in escaped for c in "&<>\"'")


class TestWriteXMLTV:

    def test_written_guide_parses_back(self, sample_epg_xml):
        original = EPGParser().parse(sample_epg_xml)
        written = write_xmltv(original)

        assert written.startswith('<?xml version="1.0" encoding="UTF-8"?>')
        assert '<!DOCTYPE tv SYSTEM "xmltv.dtd">' in written

        parsed = EPGParser().parse(written.encode("utf-8"))
        assert [c.id for c in parsed.channels] == [c.id for c in original.channels]
        assert [p.start for p in parsed.programmes] == [p.start for p in original.programmes]
        assert parsed.programmes[0].episode_nums == original.programmes[0].episode_nums

    def test_programme_child_order(self):
        start = datetime(2025, 12, 12, tzinfo=timezone.utc)
        document = GuideDocument(
            channels=[GuideChannel(id="1", display_names=[GuideText(value="One")])],
            programmes=[GuideProgramme(
                channel="1",
                start=start,
                stop=start + timedelta(hours=1),
                titles=[GuideText(value="Show")],
                categories=[GuideText(value="News")],
                descs=[GuideText(value="About")],
            )],
        )
        root = ET.fromstring(write_xmltv(document).split("\n", 2)[2])
        programme = root.find("programme")
        assert [child.tag for child in programme] == ["title", "desc", "category"]
        assert programme.get("start") == "20251212000000 +0000"
        assert programme.get("channel") == "1"

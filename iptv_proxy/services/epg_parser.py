"""
EPG Parser Service.
Parses XMLTV documents into GuideDocument models and writes them back out.
"""
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
import logging
from typing import Optional

from iptv_proxy.models.epg import (
    GuideChannel,
    GuideDocument,
    GuideEpisodeNum,
    GuideIcon,
    GuideImage,
    GuideProgramme,
    GuideText,
)

logger = logging.getLogger(__name__)

XMLTV_HEADER = '<?xml version="1.0" encoding="UTF-8"?>\n<!DOCTYPE tv SYSTEM "xmltv.dtd">\n'

_DATE_FORMATS = {
    14: '%Y%m%d%H%M%S',
    12: '%Y%m%d%H%M',
    8: '%Y%m%d',
}


def escape_html(unsafe: str) -> str:
    """Escape the five HTML special characters."""
    return (
        unsafe.replace('&', '&amp;')
        .replace('<', '&lt;')
        .replace('>', '&gt;')
        .replace('"', '&quot;')
        .replace("'", '&#039;')
    )


def parse_xmltv_date(date_str: str) -> datetime:
    """
    Parse XMLTV date format.
    Format: 20251212040000 +0000, 20251212040000 or 20251212. Missing zone means UTC.
    """
    parts = date_str.strip().split()
    if not parts:
        raise ValueError("empty XMLTV date")

    digits = parts[0][:14]
    fmt = _DATE_FORMATS.get(len(digits))
    if fmt is None:
        raise ValueError(f"unsupported XMLTV date: {date_str!r}")

    parsed = datetime.strptime(digits, fmt)
    if len(parts) > 1:
        offset = datetime.strptime(parts[1], '%z').tzinfo
        return parsed.replace(tzinfo=offset)
    return parsed.replace(tzinfo=timezone.utc)


def format_xmltv_date(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.strftime('%Y%m%d%H%M%S %z')


class EPGParser:
    """Parse XMLTV format EPG data."""

    def parse(self, content: str | bytes, source: Optional[str] = None) -> GuideDocument:
        """
        Parse an XMLTV document.

        Args:
            content: Document text, or raw bytes (the XML declaration picks the encoding)
            source: Where the document came from, kept for logging

        Raises:
            ET.ParseError: if the content is not well-formed XML
            ValueError: if the root element is not <tv>
        """
        root = ET.fromstring(content)
        if root.tag != 'tv':
            raise ValueError(f"not an XMLTV document, root element is <{root.tag}>")

        document = GuideDocument(
            generator_info_name=root.get('generator-info-name'),
            generated_ts=root.get('generated-ts'),
            source=source,
        )
        if root.get('date'):
            try:
                document.date = parse_xmltv_date(root.get('date'))
            except ValueError as e:
                logger.warning(f"Ignoring unparseable guide date in {source}: {e}")

        for channel_elem in root.findall('channel'):
            channel_id = channel_elem.get('id')
            if not channel_id:
                continue
            document.channels.append(GuideChannel(
                id=channel_id,
                display_names=self._texts(channel_elem, 'display-name'),
                icons=self._icons(channel_elem),
                urls=[u.text.strip() for u in channel_elem.findall('url') if u.text],
            ))

        skipped = 0
        for programme in root.findall('programme'):
            channel_id = programme.get('channel')
            start = programme.get('start')
            if not channel_id or not start:
                skipped += 1
                continue

            try:
                start_dt = parse_xmltv_date(start)
                stop_dt = parse_xmltv_date(programme.get('stop')) if programme.get('stop') else None
            except ValueError as e:
                logger.debug(f"Failed to parse programme date: {e}")
                skipped += 1
                continue

            language = self._texts(programme, 'language')
            document.programmes.append(GuideProgramme(
                channel=channel_id,
                start=start_dt,
                stop=stop_dt,
                titles=self._texts(programme, 'title'),
                sub_titles=self._texts(programme, 'sub-title'),
                descs=self._texts(programme, 'desc'),
                categories=self._texts(programme, 'category'),
                icons=self._icons(programme),
                images=[
                    GuideImage(value=e.text.strip(), type=e.get('type'))
                    for e in programme.findall('image') if e.text
                ],
                episode_nums=[
                    GuideEpisodeNum(value=e.text.strip(), system=e.get('system'))
                    for e in programme.findall('episode-num') if e.text
                ],
                language=language[0] if language else None,
            ))

        if skipped:
            logger.warning(f"Skipped {skipped} malformed programmes in {source or 'guide'}")
        logger.info(
            f"Parsed {len(document.channels)} channels and {len(document.programmes)} programmes"
            f" from {source or 'guide'}"
        )
        return document

    @staticmethod
    def _texts(parent: ET.Element, tag: str) -> list[GuideText]:
        return [
            GuideText(value=e.text or '', lang=e.get('lang'))
            for e in parent.findall(tag)
        ]

    @staticmethod
    def _icons(parent: ET.Element) -> list[GuideIcon]:
        icons = []
        for e in parent.findall('icon'):
            if not e.get('src'):
                continue
            width, height = e.get('width'), e.get('height')
            icons.append(GuideIcon(
                src=e.get('src'),
                width=int(width) if width and width.isdigit() else None,
                height=int(height) if height and height.isdigit() else None,
            ))
        return icons


def _add_text(parent: ET.Element, tag: str, text: GuideText):
    elem = ET.SubElement(parent, tag)
    elem.text = text.value
    if text.lang:
        elem.set('lang', text.lang)


def _add_icon(parent: ET.Element, icon: GuideIcon):
    elem = ET.SubElement(parent, 'icon', src=icon.src)
    if icon.width is not None:
        elem.set('width', str(icon.width))
    if icon.height is not None:
        elem.set('height', str(icon.height))


def write_xmltv(document: GuideDocument) -> str:
    """Serialize a GuideDocument to XMLTV text."""
    root = ET.Element('tv')
    if document.date:
        root.set('date', format_xmltv_date(document.date))
    if document.generator_info_name:
        root.set('generator-info-name', document.generator_info_name)

    for channel in document.channels:
        channel_elem = ET.SubElement(root, 'channel', id=channel.id)
        for name in channel.display_names:
            _add_text(channel_elem, 'display-name', name)
        for icon in channel.icons:
            _add_icon(channel_elem, icon)
        for url in channel.urls:
            ET.SubElement(channel_elem, 'url').text = url

    # Child order follows the XMLTV DTD
    for programme in document.programmes:
        attrs = {'start': format_xmltv_date(programme.start)}
        if programme.stop:
            attrs['stop'] = format_xmltv_date(programme.stop)
        attrs['channel'] = programme.channel
        elem = ET.SubElement(root, 'programme', attrs)

        for title in programme.titles:
            _add_text(elem, 'title', title)
        for sub_title in programme.sub_titles:
            _add_text(elem, 'sub-title', sub_title)
        for desc in programme.descs:
            _add_text(elem, 'desc', desc)
        for category in programme.categories:
            _add_text(elem, 'category', category)
        if programme.language:
            _add_text(elem, 'language', programme.language)
        for icon in programme.icons:
            _add_icon(elem, icon)
        for episode in programme.episode_nums:
            episode_elem = ET.SubElement(elem, 'episode-num')
            episode_elem.text = episode.value
            if episode.system:
                episode_elem.set('system', episode.system)
        for image in programme.images:
            image_elem = ET.SubElement(elem, 'image')
            image_elem.text = image.value
            if image.type:
                image_elem.set('type', image.type)

    ET.indent(root)
    return XMLTV_HEADER + ET.tostring(root, encoding='unicode') + '\n'

"""
HDHomeRun emulation endpoints.
Plex and similar DVR clients discover the tuner and read its lineup here.
"""
import xml.etree.ElementTree as ET
from urllib.parse import quote

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse, Response

from iptv_proxy.config import Settings, get_settings
from iptv_proxy.dependencies import get_base_url
from iptv_proxy.models.device import DiscoverResponse, LineupEntry, LineupStatus
from iptv_proxy.services.epg_mapping import CatalogNotFoundError
from iptv_proxy.services.store import DocumentStore, get_store

router = APIRouter(tags=["hdhomerun"])

LINEUP_PATH = "/lineup.json"


def build_device_xml(settings: Settings, base_url: str) -> str:
    """UPnP device description of the emulated tuner."""
    root = ET.Element("root", xmlns="urn:schemas-upnp-org:device-1-0")
    ET.SubElement(root, "URLBase").text = base_url

    spec_version = ET.SubElement(root, "specVersion")
    ET.SubElement(spec_version, "major").text = "1"
    ET.SubElement(spec_version, "minor").text = "0"

    device = ET.SubElement(root, "device")
    for tag, value in (
        ("deviceType", "urn:schemas-upnp-org:device:MediaServer:1"),
        ("friendlyName", settings.friendly_name),
        ("manufacturer", settings.manufacturer),
        ("modelName", settings.model_name),
        ("modelNumber", settings.model_number),
        ("serialNumber", settings.serial_number),
        ("UDN", f"uuid:{settings.device_id}"),
    ):
        ET.SubElement(device, tag).text = value

    ET.indent(root)
    return ET.tostring(root, encoding="unicode")


def stream_url(base_url: str, source_url: str) -> str:
    return f"{base_url}/stream?url={quote(source_url, safe='')}"


@router.get("/device.xml")
async def device_xml(
    base_url: str = Depends(get_base_url),
    settings: Settings = Depends(get_settings),
):
    return Response(content=build_device_xml(settings, base_url), media_type="text/xml")


@router.get("/discover.json", response_model=DiscoverResponse)
async def discover(
    base_url: str = Depends(get_base_url),
    settings: Settings = Depends(get_settings),
):
    return DiscoverResponse(
        FriendlyName=settings.friendly_name,
        Manufacturer=settings.manufacturer,
        ModelNumber=settings.model_name,
        FirmwareName=settings.firmware_name,
        TunerCount=settings.tuner_count,
        FirmwareVersion=settings.firmware_version,
        DeviceID=settings.device_id,
        DeviceAuth=settings.device_auth,
        BaseURL=base_url,
        LineupURL=f"{base_url}{LINEUP_PATH}",
    )


@router.get(LINEUP_PATH, response_model=list[LineupEntry])
async def lineup(
    base_url: str = Depends(get_base_url),
    store: DocumentStore = Depends(get_store),
):
    """Successful catalog entries, in catalog order."""
    catalog = await store.load_catalog()
    if catalog is None:
        return PlainTextResponse(str(CatalogNotFoundError()), status_code=404)

    return [
        LineupEntry(
            GuideName=result.channel_name,
            HD=1 if result.is_hd else 0,
            GuideNumber=str(result.channel_number),
            URL=stream_url(base_url, result.track.url),
        )
        for result in catalog.successful
    ]


@router.get("/lineup_status.json", response_model=LineupStatus)
async def lineup_status():
    return LineupStatus()


@router.api_route("/lineup.post", methods=["GET", "POST"])
async def lineup_post():
    # Scan requests are accepted and ignored, the lineup only changes on a probe run
    return {}

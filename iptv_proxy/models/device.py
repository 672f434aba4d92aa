"""
Device discovery and lineup models for the emulated HDHomeRun tuner.
Field names follow the HDHomeRun HTTP API.
"""
from pydantic import BaseModel, Field


class DiscoverResponse(BaseModel):
    """Response body of /discover.json."""
    FriendlyName: str
    Manufacturer: str
    ModelNumber: str
    FirmwareName: str
    TunerCount: int
    FirmwareVersion: str
    DeviceID: str
    DeviceAuth: str
    BaseURL: str
    LineupURL: str


class LineupEntry(BaseModel):
    """One channel of /lineup.json."""
    GuideName: str
    HD: int = 0
    GuideNumber: str
    URL: str


class LineupStatus(BaseModel):
    """Response body of /lineup_status.json."""
    ScanInProgress: int = 0
    ScanPossible: int = 1
    Source: str = "Cable"
    SourceList: list[str] = Field(default_factory=lambda: ["Cable"])

"""
Configuration management for the IPTV tuner proxy.
Uses pydantic-settings for environment variable and config file loading.
"""
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


class RakutenEpgSettings(BaseModel):
    """Rakuten TV live channel listing used as an extra guide source."""
    enabled: bool = False
    classification_id: Optional[int] = None
    locale: str = "it"
    market_code: str = "it"

    @model_validator(mode="after")
    def _require_classification(self):
        if self.enabled and self.classification_id is None:
            raise ValueError("rakuten_epg.classification_id is required when rakuten_epg is enabled")
        return self


class AudioTranscodeTrigger(BaseModel):
    """An audio (codec, profile) pair that must be re-encoded while streaming."""
    codec_name: str
    # None matches every profile of the codec
    profile: Optional[str] = None


class Settings(BaseSettings):
    """Application settings loaded from environment variables and data/config.json."""

    # API Configuration
    app_name: str = "IPTV Tuner Proxy"
    app_version: str = "0.1.0"
    debug: bool = False

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 26457

    # CORS Configuration
    cors_origins: list[str] = ["*"]

    # Rate Limiting (debug playlist viewer only, it fetches arbitrary URLs)
    m3u8_rate_limit: str = "10/minute"

    # Database
    database_path: str = "data/iptv_proxy.db"

    # Sources
    iptv_playlists: list[str] = Field(default_factory=list)
    epg_sources: list[str] = Field(default_factory=list)
    rakuten_epg: RakutenEpgSettings = Field(default_factory=RakutenEpgSettings)
    http_timeout_seconds: float = 60.0

    # Emulated device
    friendly_name: str = "Plex IPTV Proxy"
    manufacturer: str = "Silicondust"
    model_name: str = "Plex-IPTV"
    model_number: str = "Plex-IPTV"
    firmware_name: str = "plex-iptv-1.0"
    firmware_version: str = "1.0"
    device_id: str = "45654789541"
    serial_number: str = "0123456789"
    device_auth: str = "user123"
    tuner_count: int = 4

    # Probing
    ffprobe_bin: str = "ffprobe"
    probe_concurrency: int = 25
    probe_timeout_seconds: float = 60.0
    probe_request_timeout_seconds: float = 60.0
    probe_user_agent: str = "FMLE/3.0 (compatible; FMSc/1.0)"
    probe_http_referer: Optional[str] = None

    # Streaming
    ffmpeg_bin: str = "ffmpeg"
    stream_user_agent: str = "FMLE/3.0 (compatible; FMSc/1.0)"
    audio_transcode_triggers: list[AudioTranscodeTrigger] = Field(default_factory=list)
    audio_transcode_codec: str = "aac"

    # Pydantic V2 configuration
    model_config = SettingsConfigDict(
        env_prefix="IPTV_",
        env_file=".env",
        env_nested_delimiter="__",
        json_file="data/config.json",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment wins over the JSON config file
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonConfigSettingsSource(settings_cls),
            file_secret_settings,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

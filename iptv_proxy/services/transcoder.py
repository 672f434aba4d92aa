"""
Streaming Session Manager.
Turns a source URL into a live MPEG-TS byte stream produced by FFmpeg,
re-encoding audio when the probed codec is on the transcode trigger list.
"""
import asyncio
import logging
import re
from enum import Enum
from typing import AsyncIterator, Optional

from iptv_proxy.config import AudioTranscodeTrigger, Settings, get_settings
from iptv_proxy.models.channel import ChannelCatalog, ProbeSuccess
from iptv_proxy.services.prober import kill_process

logger = logging.getLogger(__name__)

COPY = "copy"

LINE_BREAK = re.compile(rb"[\r\n]")


class SessionState(str, Enum):
    PENDING = "pending"
    SPAWNED = "spawned"
    STREAMING = "streaming"
    CLOSED = "closed"
    ERRORED = "errored"


class StreamSpawnError(RuntimeError):
    """FFmpeg could not be started for a session."""


def matches_trigger(result: ProbeSuccess, triggers: list[AudioTranscodeTrigger]) -> bool:
    """True when any audio stream's (codec, profile) is listed in triggers."""
    for stream in result.audio_streams():
        for trigger in triggers:
            if stream.codec_name != trigger.codec_name:
                continue
            if trigger.profile is None or trigger.profile == stream.profile:
                return True
    return False


def decide_audio_codec(url: str, catalog: Optional[ChannelCatalog], settings: Settings) -> str:
    """Audio codec argument for ffmpeg: 'copy' or the configured transcode codec."""
    triggers = settings.audio_transcode_triggers
    if not triggers:
        return COPY

    result = catalog.find_by_url(url) if catalog else None
    if result is None or not result.ok:
        logger.warning(f"No successful probe cached for {url}, copying audio")
        return COPY

    if matches_trigger(result, triggers):
        logger.info(f"Transcoding audio of {url} to {settings.audio_transcode_codec}")
        return settings.audio_transcode_codec
    return COPY


def build_ffmpeg_command(settings: Settings, url: str, audio_codec: str) -> list[str]:
    return [
        settings.ffmpeg_bin,
        "-hide_banner",
        "-nostdin",
        "-nostats",
        "-user_agent", settings.stream_user_agent,
        "-re",
        "-rtbufsize", "128M",
        "-thread_queue_size", "4096",
        "-i", url,
        "-map", "0:v?",
        "-map", "0:a?",
        "-c:v", "copy",
        "-c:a", audio_codec,
        "-tune", "zerolatency",
        "-preset", "superfast",
        "-f", "mpegts",
        "pipe:1",
    ]


class StreamingSession:
    """
    One FFmpeg process feeding one HTTP response.

    Use as an async context manager: entering spawns FFmpeg, leaving (end of
    stream, error or cancellation on client disconnect) kills it with SIGKILL
    and stops the stderr reader. Teardown never awaits, so it also completes
    inside a cancelled task.
    """

    CHUNK_SIZE = 64 * 1024
    STDERR_READ_SIZE = 4096

    def __init__(self, url: str, audio_codec: str, settings: Settings):
        self.url = url
        self.audio_codec = audio_codec
        self.settings = settings
        self.state = SessionState.PENDING
        self.process: Optional[asyncio.subprocess.Process] = None
        self._stderr_task: Optional[asyncio.Task] = None

    @property
    def command(self) -> list[str]:
        return build_ffmpeg_command(self.settings, self.url, self.audio_codec)

    async def __aenter__(self) -> "StreamingSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is not None and not issubclass(exc_type, (asyncio.CancelledError, GeneratorExit)):
            logger.error(f"Stream {self.url} failed: {exc}")
            self.state = SessionState.ERRORED
        self.close()
        return False

    async def _spawn(self, *cmd: str) -> asyncio.subprocess.Process:
        return await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

    async def start(self):
        cmd = self.command
        logger.info(f"Starting stream {self.url} (audio: {self.audio_codec})")
        logger.debug(f"FFmpeg command: {' '.join(cmd)}")
        try:
            self.process = await self._spawn(*cmd)
        except OSError as e:
            self.state = SessionState.ERRORED
            raise StreamSpawnError(f"could not start {cmd[0]}: {e}") from e

        self.state = SessionState.SPAWNED
        self._stderr_task = asyncio.create_task(self._log_stderr())

    async def _log_stderr(self):
        # progress lines end in \r, not \n
        pending = b""
        while True:
            chunk = await self.process.stderr.read(self.STDERR_READ_SIZE)
            if not chunk:
                break
            *lines, pending = LINE_BREAK.split(pending + chunk)
            for line in lines:
                self._log_stderr_line(line)
            if len(pending) > self.STDERR_READ_SIZE:
                self._log_stderr_line(pending)
                pending = b""
        self._log_stderr_line(pending)

    def _log_stderr_line(self, line: bytes):
        text = line.decode(errors="replace").strip()
        if text:
            logger.debug(f"[ffmpeg {self.process.pid}] {text}")

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        """Yield FFmpeg's stdout until it ends."""
        self.state = SessionState.STREAMING
        while True:
            chunk = await self.process.stdout.read(self.CHUNK_SIZE)
            if not chunk:
                break
            yield chunk
        logger.info(f"Stream {self.url} ended")

    def close(self):
        if self._stderr_task is not None and not self._stderr_task.done():
            self._stderr_task.cancel()
        kill_process(self.process)
        if self.state != SessionState.ERRORED:
            self.state = SessionState.CLOSED
        logger.info(f"Stream {self.url} closed")


class TranscoderService:
    """Creates streaming sessions for the /stream endpoint."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def open_session(self, url: str, catalog: Optional[ChannelCatalog]) -> StreamingSession:
        return StreamingSession(url, decide_audio_codec(url, catalog, self.settings), self.settings)

    async def stream(self, session: StreamingSession) -> AsyncIterator[bytes]:
        """Response body generator: runs the session and yields its output."""
        try:
            async with session:
                async for chunk in session.iter_chunks():
                    yield chunk
        except StreamSpawnError as e:
            logger.error(f"Stream {session.url} could not start: {e}")


# Singleton
_transcoder_service: Optional[TranscoderService] = None


def get_transcoder_service() -> TranscoderService:
    global _transcoder_service
    if _transcoder_service is None:
        _transcoder_service = TranscoderService(get_settings())
    return _transcoder_service

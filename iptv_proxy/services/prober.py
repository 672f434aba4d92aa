"""
Stream Prober Service

Runs ffprobe against a single stream URL and turns the outcome into a
ProbeResult. A probe never raises: every failure mode becomes a
ProbeFailure carrying a machine-readable reason.
"""
import asyncio
import json
import logging
import re
from typing import Optional

from pydantic import ValidationError

from iptv_proxy.config import Settings
from iptv_proxy.models.channel import (
    UNASSIGNED,
    ProbeData,
    ProbeFailure,
    ProbeFailureReason,
    ProbeParameters,
    ProbeResult,
    ProbeSuccess,
    Track,
)

logger = logging.getLogger(__name__)

UNTITLED_CHANNEL = "untitled channel"

_VALID_CHANNEL_NUMBER = re.compile(r"^[0-9]+$")


def get_channel_number(track: Track) -> int:
    """Hinted channel number of a track (tvg-chno), or UNASSIGNED if missing or not a positive integer."""
    chno = track.metadata.tvg_chno
    if chno is not None and _VALID_CHANNEL_NUMBER.match(chno) and int(chno) > 0:
        return int(chno)
    return UNASSIGNED


def get_channel_title(track: Track) -> str:
    return track.title or UNTITLED_CHANNEL


class ProbeError(Exception):
    """Raised internally when ffprobe could not produce usable output."""

    def __init__(self, reason: ProbeFailureReason, message: str):
        super().__init__(message)
        self.reason = reason


class StreamProber:
    """Probe stream URLs with ffprobe."""

    def __init__(self, settings: Settings):
        self.ffprobe_bin = settings.ffprobe_bin
        self.timeout = settings.probe_timeout_seconds
        self.request_timeout = settings.probe_request_timeout_seconds
        self.user_agent = settings.probe_user_agent
        self.http_referer = settings.probe_http_referer

    def build_parameters(self, track: Track) -> ProbeParameters:
        return ProbeParameters(
            track=track,
            timeout=self.timeout,
            user_agent=track.metadata.http_user_agent or self.user_agent,
            http_referer=track.metadata.http_referrer or self.http_referer,
        )

    def build_command(self, params: ProbeParameters) -> list[str]:
        """Build the ffprobe argument list for one probe."""
        cmd = [
            self.ffprobe_bin,
            "-of", "json",
            "-v", "error",
            "-hide_banner",
            "-show_streams",
            "-show_format",
        ]
        if self.request_timeout:
            # ffprobe's -timeout is in microseconds
            cmd += ["-timeout", str(int(self.request_timeout * 1_000_000))]
        if params.http_referer:
            cmd += ["-headers", f"Referer: {params.http_referer}\r\n"]
        if params.user_agent:
            cmd += ["-user_agent", params.user_agent]
        cmd.append(params.track.url)
        return cmd

    async def probe(self, track: Track) -> ProbeResult:
        """Probe one track. Never raises for stream-level problems."""
        params = self.build_parameters(track)
        channel_number = get_channel_number(track)
        channel_name = get_channel_title(track)
        logger.info(f"Probing {track.url}")

        try:
            stdout = await self._run(self.build_command(params), params.timeout)
            metadata = parse_probe_output(stdout)
        except ProbeError as e:
            logger.info(f"Probing {track.url} failed ({e.reason.value}): {e}")
            return ProbeFailure(
                channel_number=channel_number,
                channel_name=channel_name,
                params=params,
                reason=e.reason,
                error=str(e),
            )

        logger.info(f"Probing {track.url} succeeded: {len(metadata.streams)} streams")
        return ProbeSuccess(
            channel_number=channel_number,
            channel_name=channel_name,
            params=params,
            metadata=metadata,
        )

    async def _spawn(self, *cmd: str) -> asyncio.subprocess.Process:
        return await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

    async def _run(self, cmd: list[str], timeout: float) -> bytes:
        """Run ffprobe and return its stdout, killing it if it exceeds timeout."""
        try:
            process = await self._spawn(*cmd)
        except OSError as e:
            raise ProbeError(ProbeFailureReason.SPAWN_FAILED, f"could not start {cmd[0]}: {e}")

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            kill_process(process)
            await process.wait()
            raise ProbeError(ProbeFailureReason.TIMEOUT, f"ffprobe timed out after {timeout:g}s")
        except asyncio.CancelledError:
            kill_process(process)
            raise

        if process.returncode != 0:
            error_text = (stderr or b"").decode(errors="replace").strip()
            raise ProbeError(
                ProbeFailureReason.EXIT_STATUS,
                error_text[:500] or f"ffprobe exited with code {process.returncode}",
            )
        return stdout


def parse_probe_output(raw: bytes | str) -> ProbeData:
    """Validate ffprobe JSON output. Raises ProbeError on empty, invalid or stream-less output."""
    if not raw or not raw.strip():
        raise ProbeError(ProbeFailureReason.INVALID_OUTPUT, "ffprobe returned empty output")

    try:
        data = ProbeData.model_validate(json.loads(raw))
    except json.JSONDecodeError as e:
        raise ProbeError(ProbeFailureReason.INVALID_OUTPUT, f"failed to parse ffprobe JSON: {e}")
    except ValidationError as e:
        raise ProbeError(
            ProbeFailureReason.INVALID_OUTPUT,
            f"unexpected ffprobe output: {e.error_count()} validation errors",
        )

    if not data.streams:
        raise ProbeError(ProbeFailureReason.NO_STREAMS, "FFMPEG_STREAMS_NOT_FOUND")
    return data


def kill_process(process: Optional[asyncio.subprocess.Process]):
    if process is None or process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        pass

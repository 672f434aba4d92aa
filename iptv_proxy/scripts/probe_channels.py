#!/usr/bin/env python3
"""
Channel Probe Script

Downloads every configured playlist, probes each unique stream with
ffprobe and stores the numbered channel catalog. Unless --skip-epg is
given, the EPG is regenerated from the new catalog afterwards.

Usage:
    python -m iptv_proxy.scripts.probe_channels
    python -m iptv_proxy.scripts.probe_channels --skip-epg
"""

import argparse
import asyncio
import logging
import sys

from iptv_proxy.config import get_settings
from iptv_proxy.models.channel import ChannelCatalog, ProbeFailureReason
from iptv_proxy.services.catalog import ConfigurationError, DuplicateChannelError, ProbeOrchestrator
from iptv_proxy.services.epg_mapping import generate_epg
from iptv_proxy.services.store import get_store

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


# Failure categories
CATEGORIES = {
    ProbeFailureReason.TIMEOUT: "⏱️ Timeout",
    ProbeFailureReason.SPAWN_FAILED: "💥 ffprobe did not start",
    ProbeFailureReason.EXIT_STATUS: "❌ ffprobe error",
    ProbeFailureReason.INVALID_OUTPUT: "❓ Invalid output",
    ProbeFailureReason.NO_STREAMS: "📭 No streams",
}


def print_summary(catalog: ChannelCatalog):
    """
    Print a human-readable summary of the probe run.
    """
    total = len(catalog.results) or 1
    working = len(catalog.successful)

    print("\n" + "=" * 60)
    print("CHANNEL PROBE RESULTS")
    print("=" * 60)
    print(f"Probed: {len(catalog.results)} streams")
    print(f"Time: {catalog.date.isoformat()}")
    print("-" * 60)

    pct = working / total * 100
    print(f"{'✅ Working':30} {working:5} ({pct:5.1f}%) {'█' * int(pct / 2)}")
    for reason, label in CATEGORIES.items():
        count = sum(1 for r in catalog.results if not r.ok and r.reason == reason)
        if count:
            pct = count / total * 100
            print(f"{label:30} {count:5} ({pct:5.1f}%) {'█' * int(pct / 2)}")

    print("-" * 60)
    for result in catalog.successful[:10]:
        print(f"   {result.channel_number:>5}  {result.channel_name}")
    if working > 10:
        print(f"   ... and {working - 10} more")
    print("\n" + "=" * 60)


async def main():
    parser = argparse.ArgumentParser(description="Probe IPTV playlists and build the channel catalog")
    parser.add_argument(
        "--skip-epg",
        action="store_true",
        help="Do not regenerate the EPG after probing"
    )

    args = parser.parse_args()
    settings = get_settings()
    store = await get_store()

    try:
        catalog = await ProbeOrchestrator(settings, store).run()
    except (ConfigurationError, DuplicateChannelError) as e:
        logger.error(f"Channel probe failed: {e}")
        sys.exit(1)

    print_summary(catalog)

    if args.skip_epg:
        return

    logger.info("🔗 Regenerating EPG from the new catalog...")
    guide = await generate_epg(settings, store)
    print(f"\n📺 EPG: {len(guide.channels)} channels, {len(guide.programmes)} programmes")


if __name__ == "__main__":
    asyncio.run(main())

"""
EPG Generation Script.
Downloads every guide source, matches it against the stored channel
catalog and stores the merged XMLTV guide.

Usage:
    python -m iptv_proxy.scripts.generate_epg
    python -m iptv_proxy.scripts.generate_epg --output data/epg.xml
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path

from iptv_proxy.config import get_settings
from iptv_proxy.services.epg_mapping import CatalogNotFoundError, generate_epg
from iptv_proxy.services.store import get_store

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def main():
    parser = argparse.ArgumentParser(description="Generate the XMLTV guide")
    parser.add_argument(
        "--output", "-o",
        type=str,
        default=None,
        help="Also write the guide to this file"
    )

    args = parser.parse_args()
    store = await get_store()

    try:
        guide = await generate_epg(get_settings(), store)
    except CatalogNotFoundError as e:
        logger.error(str(e))
        sys.exit(1)

    print(f"\n📺 Generated EPG: {len(guide.programmes)} programmes for {len(guide.channels)} channels")

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(await store.load_epg(), encoding="utf-8")
        print(f"📄 Guide saved to: {output_path}")


if __name__ == "__main__":
    asyncio.run(main())

"""
Import contest fee percentages as billing account markup.

Usage:
    python -m billing_backend.import_markup time_oltp_project_contest_fee_percentage.json
"""

import argparse
import asyncio
import logging
import sys

from billing_backend.app.core.config import settings
from billing_backend.app.db.session import engine
from billing_backend.app.services.legacy_import import LegacyImporter, load_contest_fees


async def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Set billing account markup from legacy contest fees.")
    parser.add_argument("file", help="JSON array or bundle with time_oltp:project_contest_fee_percentage")
    args = parser.parse_args(argv)

    rows = load_contest_fees(args.file)
    try:
        stats = await LegacyImporter().run_markup(rows)
    finally:
        await engine.dispose()
    print(f"Contest fee import complete. updated={stats.markups}, skipped={stats.skipped}")
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    sys.exit(asyncio.run(main()))

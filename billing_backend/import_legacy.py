"""
Import legacy billing exports.

Usage:
    python -m billing_backend.import_legacy export_1.json [export_2.json ...] \
        [--default-client-id legacy-unknown-client]
"""

import argparse
import asyncio
import logging
import sys

from billing_backend.app.core.config import settings
from billing_backend.app.db.session import engine
from billing_backend.app.services.legacy_import import DEFAULT_CLIENT_ID, LegacyImporter, load_bundle


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Import legacy clients, billing accounts, access grants and challenge budgets.")
    parser.add_argument("files", nargs="+", help="JSON export files")
    parser.add_argument(
        "--default-client-id",
        default=DEFAULT_CLIENT_ID,
        help="Client used for projects whose client is missing (default: %(default)s)",
    )
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    args = parse_args(argv)
    bundle = load_bundle(args.files)
    try:
        stats = await LegacyImporter(default_client_id=args.default_client_id).run(bundle)
    finally:
        await engine.dispose()
    print(f"Import complete: {stats.as_dict()}")
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    sys.exit(asyncio.run(main()))

#!/usr/bin/env python3
"""
Report content recorded under more than one path.

Reads the fingerprint store and prints every group of paths whose files
had byte-identical content when they were last ingested.

Usage:
    python scripts/find_duplicates.py
    python scripts/find_duplicates.py --hash <sha256>
"""

import argparse
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.utils.config import get_settings
from app.utils.errors import StoreError
from app.utils.fingerprint_store import FingerprintStore
from app.utils.helpers import format_bytes
from app.utils.log import setup_logging


def print_group(store: FingerprintStore, content_hash: str, paths: list[str]):
    """Print one duplicate group with per-path sizes."""
    print(f"\n{content_hash}  ({len(paths)} paths)")
    for path in paths:
        fingerprint = store.get(path)
        if fingerprint is None:
            print(f"  {'?':>10}  {path}")
            continue
        modified = fingerprint.modified_at.strftime("%Y-%m-%d %H:%M")
        print(f"  {format_bytes(fingerprint.size):>10}  {modified}  {path}")


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="List duplicate content in the fingerprint store.")
    parser.add_argument("--db", type=Path, default=None, help="Fingerprint database (defaults to settings).")
    parser.add_argument("--hash", dest="content_hash", default=None, help="Only show paths with this hash.")
    args = parser.parse_args(argv)

    setup_logging("WARNING")
    db_path = args.db.expanduser() if args.db else get_settings().get_fingerprint_db_path()
    if not db_path.exists():
        logger.error(f"Fingerprint store not found: {db_path}")
        return 1

    store = FingerprintStore(db_path)
    try:
        store.connect()
        if args.content_hash:
            groups = {args.content_hash.lower(): store.find_all_paths_with_hash(args.content_hash.lower())}
            groups = {key: paths for key, paths in groups.items() if paths}
        else:
            groups = store.duplicate_groups()

        if not groups:
            print("No duplicate content found.")
            return 0

        wasted = 0
        for content_hash, paths in groups.items():
            print_group(store, content_hash, paths)
            first = store.get(paths[0])
            if first:
                wasted += first.size * (len(paths) - 1)

        print(f"\n{len(groups)} groups, {format_bytes(wasted)} held in redundant copies")
        return 0
    except StoreError as e:
        logger.error(f"Failed to read fingerprint store: {e}")
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""Scan a directory of APK archives for exposed Firebase / Supabase backends.

Runs one incremental scan (only archives not in the cache) or, with
``--full``, clears the cache and scans every archive again. Prints a summary
and the vulnerable packages.

Usage:
    python scripts/run_scan.py --packages-dir ./apks
    python scripts/run_scan.py --packages-dir ./apks --full --cache-dir /tmp/rcspy
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Allow running from project root
sys.path.insert(0, ".")

from rcspy.config import get_settings
from rcspy.models.schemas import AppFilter
from rcspy.services.analysis_orchestrator import AnalysisOrchestrator
from rcspy.services.context import AnalysisContext
from rcspy.services.package_source import DirectoryPackageSource

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")


async def run(packages_dir: Path, cache_dir: Path | None, full: bool) -> int:
    """Run one scan and print the results. Returns the vulnerable count."""
    settings = get_settings()
    if cache_dir is not None:
        settings = settings.model_copy(update={"cache_dir": cache_dir})

    async with AnalysisContext(settings) as context:
        orchestrator = AnalysisOrchestrator(context, DirectoryPackageSource(packages_dir))
        if full:
            progress = await orchestrator.rescan_all()
        else:
            progress = await orchestrator.load_and_resume()

        print(
            f"\n{progress.completed}/{progress.total} packages analyzed "
            f"({progress.cached} cached): {progress.with_firebase} Firebase, "
            f"{progress.with_supabase} Supabase, {progress.vulnerable} vulnerable"
        )
        for package, record in orchestrator.filtered(AppFilter.VULNERABLE):
            details = []
            if record.remote_config_accessible:
                details.append(f"Remote Config ({record.remote_config.value_count} values)")
            if record.supabase_vulnerable:
                sb = record.supabase
                details.append(
                    f"Supabase {sb.working_url} ({len(sb.exposed_tables)} tables, "
                    f"{len(sb.public_buckets)} public buckets, {len(sb.exposed_objects)} objects)"
                )
            print(f"  [VULNERABLE] {package.package_id}: {', '.join(details)}")

        for package, record in orchestrator.filtered(AppFilter.ERRORS):
            print(f"  [ERROR] {package.package_id}: {record.error}")

        return progress.vulnerable


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--packages-dir", type=Path, required=True, help="Directory of *.apk archives")
    parser.add_argument("--cache-dir", type=Path, default=None, help="Override the cache directory")
    parser.add_argument("--full", action="store_true", help="Clear the cache and rescan every archive")
    args = parser.parse_args()

    vulnerable = asyncio.run(run(args.packages_dir, args.cache_dir, args.full))
    sys.exit(1 if vulnerable else 0)


if __name__ == "__main__":
    main()

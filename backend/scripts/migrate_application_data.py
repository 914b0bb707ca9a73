"""
Rewrite stored application payloads in batches.

Usage:
    python backend/scripts/migrate_application_data.py --transform strip_empty_values
    python backend/scripts/migrate_application_data.py --transform mypkg.payloads:upgrade --batch-size 50

DRY_RUN=true (or --dry-run) reports what would change without writing.
Each batch is committed on its own; a failed batch is rolled back and the
run carries on with the next one.
"""
import argparse
import json
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

# Add backend directory to path for package imports
BACKEND_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(BACKEND_DIR))

load_dotenv(BACKEND_DIR.parent / ".env", override=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Rewrite stored application payloads")
    parser.add_argument(
        "--transform", "-t", required=True,
        help="Built-in transform name or module:function",
    )
    parser.add_argument("--batch-size", type=int, default=10, help="Applications per transaction")
    parser.add_argument(
        "--dry-run", action="store_true",
        default=os.environ.get("DRY_RUN", "").lower() == "true",
        help="Report changes without writing (default from DRY_RUN)",
    )
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    from benefits_bpp.core.database import get_session_local
    from benefits_bpp.core.logging_config import LoggingConfig
    from benefits_bpp.services.application_store import ApplicationStore
    from benefits_bpp.services.payload_migration import (PayloadMigration,
                                                         load_transform)

    LoggingConfig.configure()
    logger = LoggingConfig.get_logger("benefits_bpp.scripts.migrate_application_data")

    try:
        transform = load_transform(args.transform)
    except ValueError as e:
        sys.stderr.write(f"{e}\n")
        return 2

    logger.info(f"Mode: {'DRY RUN' if args.dry_run else 'LIVE'}; transform {args.transform}")
    db = get_session_local()()
    try:
        report = PayloadMigration(
            ApplicationStore(db),
            transform,
            batch_size=args.batch_size,
            dry_run=args.dry_run,
        ).run()
    finally:
        db.close()

    print(json.dumps(report.to_dict(), indent=2))
    return 1 if report.failed else 0


if __name__ == "__main__":
    sys.exit(main())

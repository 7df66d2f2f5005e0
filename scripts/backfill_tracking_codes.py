#!/usr/bin/env python3
"""
Backfill Tracking Codes

Assigns a tracking code (and its referral links) to every profile that
does not have one yet.

Usage:
    python scripts/backfill_tracking_codes.py
"""

import logging
import os
import sys

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from config.settings import get_settings  # noqa: E402
from database.connection import get_db_session  # noqa: E402
from referrals.tracking_codes import backfill_tracking_codes  # noqa: E402
from services.logging_config import configure_logging  # noqa: E402

logger = logging.getLogger("backfill_tracking_codes")


def main() -> int:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_output=settings.log_json)

    with get_db_session() as session:
        updated, errors = backfill_tracking_codes(session)

    print(f"✓ Updated {updated} profiles")
    for error in errors:
        print(f"✗ {error}")
    return 1 if errors else 0


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Auto-approve Commissions

Cron entry point. Approves pending commissions whose lead has stayed
converted for REFERRAL_AUTO_APPROVE_DAYS.

Usage:
    python scripts/auto_approve_commissions.py
"""

import logging
import os
import sys

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from config.settings import get_settings  # noqa: E402
from database.connection import get_db_session  # noqa: E402
from referrals.commissions import auto_approve_commissions  # noqa: E402
from services.logging_config import configure_logging  # noqa: E402

logger = logging.getLogger("auto_approve_commissions")


def main():
    settings = get_settings()
    configure_logging(level=settings.log_level, json_output=settings.log_json)

    with get_db_session() as session:
        approved = auto_approve_commissions(session)

    logger.info(f"Auto-approve run finished: {approved} approved")


if __name__ == "__main__":
    main()

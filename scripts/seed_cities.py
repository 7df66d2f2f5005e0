#!/usr/bin/env python3
"""
Seed US Cities for Landing Pages

Populates the cities table with the most populous US cities. Existing
rows (matched by slug) are updated, so the script is safe to re-run.

Usage:
    python scripts/seed_cities.py
    python scripts/seed_cities.py --create-tables
"""

import argparse
import logging
import os
import re
import sys

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from sqlalchemy import select  # noqa: E402

from config.settings import get_settings  # noqa: E402
from database.connection import get_db_session, init_database  # noqa: E402
from database.models import City  # noqa: E402
from services.logging_config import configure_logging  # noqa: E402

logger = logging.getLogger("seed_cities")

# States without a personal income tax
NO_INCOME_TAX_STATES = {"AK", "FL", "NV", "NH", "SD", "TN", "TX", "WA", "WY"}

# (name, state, state code, population)
TOP_US_CITIES = [
    ("New York", "New York", "NY", 8336817),
    ("Los Angeles", "California", "CA", 3979576),
    ("Chicago", "Illinois", "IL", 2693976),
    ("Houston", "Texas", "TX", 2320268),
    ("Phoenix", "Arizona", "AZ", 1680992),
    ("Philadelphia", "Pennsylvania", "PA", 1584064),
    ("San Antonio", "Texas", "TX", 1547253),
    ("San Diego", "California", "CA", 1423851),
    ("Dallas", "Texas", "TX", 1343573),
    ("San Jose", "California", "CA", 1021795),
    ("Austin", "Texas", "TX", 978908),
    ("Jacksonville", "Florida", "FL", 949611),
    ("Fort Worth", "Texas", "TX", 918915),
    ("Columbus", "Ohio", "OH", 905748),
    ("Charlotte", "North Carolina", "NC", 897720),
    ("San Francisco", "California", "CA", 873965),
    ("Indianapolis", "Indiana", "IN", 867125),
    ("Seattle", "Washington", "WA", 749256),
    ("Denver", "Colorado", "CO", 715522),
    ("Washington", "District of Columbia", "DC", 705749),
    ("Boston", "Massachusetts", "MA", 692600),
    ("El Paso", "Texas", "TX", 678815),
    ("Nashville", "Tennessee", "TN", 678448),
    ("Detroit", "Michigan", "MI", 639111),
    ("Oklahoma City", "Oklahoma", "OK", 638367),
    ("Portland", "Oregon", "OR", 635067),
    ("Las Vegas", "Nevada", "NV", 634773),
    ("Memphis", "Tennessee", "TN", 633104),
    ("Louisville", "Kentucky", "KY", 617638),
    ("Baltimore", "Maryland", "MD", 585708),
    ("Milwaukee", "Wisconsin", "WI", 577222),
    ("Albuquerque", "New Mexico", "NM", 564559),
    ("Tucson", "Arizona", "AZ", 548073),
    ("Fresno", "California", "CA", 542107),
    ("Mesa", "Arizona", "AZ", 528159),
    ("Sacramento", "California", "CA", 524943),
    ("Atlanta", "Georgia", "GA", 510823),
    ("Kansas City", "Missouri", "MO", 508090),
    ("Colorado Springs", "Colorado", "CO", 486388),
    ("Omaha", "Nebraska", "NE", 486051),
    ("Raleigh", "North Carolina", "NC", 474069),
    ("Miami", "Florida", "FL", 467963),
    ("Long Beach", "California", "CA", 466742),
    ("Virginia Beach", "Virginia", "VA", 459470),
    ("Oakland", "California", "CA", 440646),
    ("Minneapolis", "Minnesota", "MN", 425336),
    ("Tulsa", "Oklahoma", "OK", 413066),
    ("Tampa", "Florida", "FL", 407599),
    ("Arlington", "Texas", "TX", 398121),
    ("New Orleans", "Louisiana", "LA", 390144),
]


def city_slug(name: str, state_code: str) -> str:
    """'New York', 'NY' -> 'new-york-ny'"""
    base = re.sub(r"[^a-z0-9]+", "-", f"{name} {state_code}".lower())
    return base.strip("-")


def seed_cities(session) -> int:
    """Insert or update every built-in city. Returns rows touched."""
    count = 0
    for name, state, state_code, population in TOP_US_CITIES:
        slug = city_slug(name, state_code)
        city = session.execute(select(City).where(City.slug == slug)).scalars().first()
        if city is None:
            city = City(slug=slug)
            session.add(city)
        city.name = name
        city.state = state
        city.state_code = state_code
        city.population = population
        city.has_state_tax = state_code not in NO_INCOME_TAX_STATES
        count += 1
    session.flush()
    return count


def main():
    parser = argparse.ArgumentParser(description="Seed US cities for landing pages")
    parser.add_argument("--create-tables", action="store_true", help="Create tables first (development)")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(level=settings.log_level, json_output=settings.log_json)

    if args.create_tables:
        init_database()

    with get_db_session() as session:
        count = seed_cities(session)

    logger.info(f"Seeded {count} cities")
    print(f"✓ Seeded {count} cities")


if __name__ == "__main__":
    main()

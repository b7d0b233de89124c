import argparse
import json

from ess import clock
from ess.config import settings
from ess.core.logging_config import setup_logging
from ess.db import SessionLocal
from ess.jobs import seed_public_holidays


def main() -> int:
    parser = argparse.ArgumentParser(description="Load national public holidays into the holiday table")
    parser.add_argument("--year", type=int, default=clock.today().year, help="Calendar year to load")
    parser.add_argument("--country", default=settings.HOLIDAY_COUNTRY, help="ISO country code, e.g. MY")
    parser.add_argument("--company-id", type=int, default=None, help="Attach holidays to one company only")
    args = parser.parse_args()

    setup_logging()
    with SessionLocal() as db:
        inserted = seed_public_holidays(db, year=args.year, country=args.country, company_id=args.company_id)
    print(json.dumps({"year": args.year, "country": args.country.upper(), "inserted": inserted}))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

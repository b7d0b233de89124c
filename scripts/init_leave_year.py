import argparse
import json

from ess import clock
from ess.core.logging_config import setup_logging
from ess.db import SessionLocal
from ess.jobs import initialize_leave_year


def main() -> int:
    parser = argparse.ArgumentParser(description="Create leave balances for a new year, carrying forward unused days")
    parser.add_argument("--year", type=int, default=clock.today().year, help="Leave year to initialize")
    parser.add_argument("--company-id", type=int, default=None, help="Limit to one company")
    args = parser.parse_args()

    setup_logging()
    with SessionLocal() as db:
        created = initialize_leave_year(db, year=args.year, company_id=args.company_id)
    print(json.dumps({str(k): v for k, v in created.items()}, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

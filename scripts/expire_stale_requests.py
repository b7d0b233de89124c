import argparse
import json

from ess.config import settings
from ess.core.logging_config import setup_logging
from ess.db import SessionLocal
from ess.jobs import expire_stale_requests


def main() -> int:
    parser = argparse.ArgumentParser(description="Reject approval requests left pending too long")
    parser.add_argument("--days", type=int, default=settings.STALE_REQUEST_DAYS, help="Pending age in days before expiry")
    args = parser.parse_args()

    setup_logging()
    with SessionLocal() as db:
        result = expire_stale_requests(db, days=max(1, args.days))
    print(json.dumps(result, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

import argparse
import json

from ess.core.logging_config import setup_logging
from ess.db import SessionLocal
from ess.jobs import auto_clock_out


def main() -> int:
    parser = argparse.ArgumentParser(description="Close attendance records nobody clocked out of")
    parser.parse_args()

    setup_logging()
    with SessionLocal() as db:
        closed = auto_clock_out(db)
    print(json.dumps({"closed": closed}))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

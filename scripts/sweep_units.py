"""
Sweeps orphaned units back into circulation.

Run once, or every `--interval` seconds:

    python scripts/sweep_units.py --interval 900
"""

import argparse
import logging
import time
from dotenv import load_dotenv

load_dotenv()

from kitroom.core.db import session, init as db_init
from kitroom.core.api import KitroomAPI
from kitroom.configs import SWEEP_INTERVAL, LOG_LEVEL

logger = logging.getLogger(__name__)


def sweep_once():
    db = session()
    try:
        report = KitroomAPI.sweep_all(db)
        logger.info(f"sweep report: {report}")
        return report
    finally:
        session.remove()

def main():
    parser = argparse.ArgumentParser(description="Free units left behind by closed tickets, requests and loans")
    parser.add_argument("--interval", type=int, nargs="?", const=SWEEP_INTERVAL, default=None,
                        help=f"Repeat every N seconds (default when given bare: {SWEEP_INTERVAL})")
    args = parser.parse_args()
    logging.basicConfig(level=LOG_LEVEL.upper())

    db_init()
    if not args.interval:
        print(sweep_once())
        return
    while True:
        try:
            sweep_once()
        except Exception as e:
            logger.error(f"Sweep failed: {e}")
        time.sleep(args.interval)

if __name__ == "__main__":
    main()

"""
Sends a `loan_due_reminder` notification for every active loan due tomorrow.
Meant to be run daily from cron.
"""

import argparse
import logging
from dotenv import load_dotenv

load_dotenv()

from kitroom.core.db import session, init as db_init
from kitroom.core.api import KitroomAPI
from kitroom.core.utils import as_date
from kitroom.configs import LOG_LEVEL

logger = logging.getLogger(__name__)

def main():
    parser = argparse.ArgumentParser(description="Remind borrowers of loans due tomorrow")
    parser.add_argument("--today", help="Pretend today is YYYY-MM-DD", default=None)
    args = parser.parse_args()
    logging.basicConfig(level=LOG_LEVEL.upper())

    db_init()
    db = session()
    try:
        sent = KitroomAPI.send_due_reminders(db, today=as_date(args.today) if args.today else None)
        print(f"Sent {sent} reminder(s).")
    finally:
        session.remove()

if __name__ == "__main__":
    main()

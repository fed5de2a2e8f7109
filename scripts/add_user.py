"""
Creates or updates a Kitroom user, e.g. to register the first administrator:

    python scripts/add_user.py --user-id 1 --email desk@example.edu --role admin
"""

import argparse
from dotenv import load_dotenv

load_dotenv()

from kitroom.core.db import session, init as db_init
from kitroom.core.api import KitroomAPI

def main():
    parser = argparse.ArgumentParser(description="Create or update a Kitroom user")
    parser.add_argument("--user-id", type=int, required=True,
                        help="The user's id at the identity provider")
    parser.add_argument("--email", default=None)
    parser.add_argument("--name", default=None)
    parser.add_argument("--surname", default=None)
    parser.add_argument("--role", default=None)
    parser.add_argument("--course", default=None)
    args = parser.parse_args()

    db_init()
    db = session()
    try:
        user = KitroomAPI.ensure_user(
            db, args.user_id, email=args.email, name=args.name, surname=args.surname,
            role=args.role, course=args.course)
        print(f"User {user.id} <{user.email}> saved as {user.role}")
    finally:
        session.remove()

if __name__ == "__main__":
    main()

"""
Issues a signed bearer token for a Kitroom identity, for tooling and local testing.
"""

import argparse
from dotenv import load_dotenv

load_dotenv()

from kitroom.core.auth import Identity, create_token

def main():
    parser = argparse.ArgumentParser(description="Issue a Kitroom bearer token")
    parser.add_argument("--user-id", type=int, required=True)
    parser.add_argument("--role", default="user")
    parser.add_argument("--course", default=None)
    parser.add_argument("--email", default=None)
    parser.add_argument("--name", default=None)
    args = parser.parse_args()
    print(create_token(Identity(user_id=args.user_id, role=args.role, course=args.course,
                                email=args.email, name=args.name)))

if __name__ == "__main__":
    main()

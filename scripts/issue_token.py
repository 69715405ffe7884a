#!/usr/bin/env python3
"""
Issue bare (unscoped) credentials for a user, signed with the configured keys.
Useful for creating or joining games from curl while no login service is running.
Usage: python scripts/issue_token.py <username> [--userid ID]
From repo root with PYTHONPATH=. or after pip install -e .
"""
import argparse
import json
import sys
import uuid

from taskhunt.api.auth import issue_credentials
from taskhunt.config import LifecycleConfig


def get_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Issue access/refresh tokens for a user")
    parser.add_argument("username", type=str, help="Username carried in the token")
    parser.add_argument("--userid", type=str, default=None, help="User id (default: a new uuid)")
    return parser


def main() -> None:
    args = get_parser().parse_args()
    username = args.username.strip()
    if not username:
        print("Error: provide a username.", file=sys.stderr)
        sys.exit(1)

    userid = args.userid or str(uuid.uuid4())
    creds = issue_credentials(userid, username, LifecycleConfig.from_env())
    print(json.dumps({"userid": userid, "username": username, **creds.to_dict()}, indent=2))


if __name__ == "__main__":
    main()

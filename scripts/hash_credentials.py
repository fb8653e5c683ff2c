#!/usr/bin/env python3
"""
Build the login credential table.

Usage:
    # One line per account: USERNAME=password (DEPT001=..., ADMIN=...)
    python scripts/hash_credentials.py plain.txt > credentials.json

    # Point the app at it
    export QA_CREDENTIALS_PATH=credentials.json

Only pbkdf2_sha256 hashes are written; the plain file can be deleted
afterwards.
"""
import json
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from qa_portal.auth import hash_password


def parse_lines(lines):
    """Yield (username, password) pairs; blank lines and # comments are skipped."""
    for number, line in enumerate(lines, 1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            raise ValueError(f"line {number}: expected USERNAME=password")
        username, password = line.split("=", 1)
        yield username.strip(), password.strip()


def build_table(lines):
    return {username: hash_password(password) for username, password in parse_lines(lines)}


def main():
    if len(sys.argv) != 2:
        print(__doc__)
        sys.exit(1)

    with open(sys.argv[1], encoding="utf-8") as f:
        try:
            table = build_table(f)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)

    json.dump(table, sys.stdout, indent=2, sort_keys=True)
    print()
    print(f"{len(table)} accounts hashed", file=sys.stderr)


if __name__ == "__main__":
    main()

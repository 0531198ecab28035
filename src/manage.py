"""FoodStream ordering database management CLI.

Creates and drops the order tables on the SQL providers configured for the
ordering domain (``PROTEAN_ENV=production`` selects PostgreSQL).

Usage:
    python src/manage.py setup-db   # Create all tables
    python src/manage.py drop-db    # Drop all tables
"""

import argparse
import sys


def setup_database():
    from ordering.domain import ordering
    from ordering.utils.db import setup_db

    print("Initializing ordering domain...")
    ordering.init()
    print("Creating ordering database schema...")
    providers = setup_db(ordering)
    if not providers:
        print("  No SQL provider configured; nothing to create.")
    else:
        print(f"  Schema ready on: {', '.join(providers)}.")
    print("Done.")


def drop_database():
    from ordering.domain import ordering
    from ordering.utils.db import drop_db

    print("Initializing ordering domain...")
    ordering.init()
    print("Dropping ordering database schema...")
    providers = drop_db(ordering)
    if not providers:
        print("  No SQL provider configured; nothing to drop.")
    else:
        print(f"  Schema dropped on: {', '.join(providers)}.")
    print("Done.")


def main():
    parser = argparse.ArgumentParser(description="FoodStream ordering database management")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")

    args = parser.parse_args()

    if args.command == "setup-db":
        setup_database()
    elif args.command == "drop-db":
        drop_database()
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()

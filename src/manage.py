"""Logistics database management CLI.

Creates and drops the relational schema of the logistics domain. With the
default (memory) configuration there is nothing to do; run with
``PROTEAN_ENV=production`` and ``DATABASE_URL`` set to target PostgreSQL.

Usage:
    python src/manage.py setup-db   # Create all tables
    python src/manage.py drop-db    # Drop all tables
"""

import argparse
import sys

from rich.console import Console

console = Console()


def _domain():
    from logistics.domain import logistics

    console.print("Initializing [bold]logistics[/bold] domain...")
    logistics.init()
    return logistics


def setup_database():
    """Create the database schema for the logistics domain."""
    from logistics.utils.db import setup_db

    domain = _domain()
    console.print("Creating logistics database schema...")
    setup_db(domain)
    console.print("[green]  logistics schema ready.[/green]")


def drop_database():
    """Drop the database schema for the logistics domain."""
    from logistics.utils.db import drop_db

    domain = _domain()
    console.print("Dropping logistics database schema...")
    drop_db(domain)
    console.print("[yellow]  logistics schema dropped.[/yellow]")


def main():
    parser = argparse.ArgumentParser(description="Logistics database management")
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

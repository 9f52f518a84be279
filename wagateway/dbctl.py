"""
Database maintenance for the gateway store.

Usage:
    wagateway-db migrate
    wagateway-db reset
    wagateway-db reset --yes
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Callable

import asyncpg
from alembic import command
from alembic.config import Config

from .config import gateway_config


MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"
ALEMBIC_INI = MIGRATIONS_DIR / "alembic.ini"

# dependents first
RESET_TABLES = ("api_keys", "clients", "alembic_version")


def alembic_config(database_url: str) -> Config:
    config = Config(str(ALEMBIC_INI))
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    config.set_main_option("sqlalchemy.url", database_url)
    return config


async def drop_tables(dsn: str) -> None:
    con = await asyncpg.connect(dsn)
    try:
        for table in RESET_TABLES:
            print(f"[db] dropping {table}")
            await con.execute(f"DROP TABLE IF EXISTS {table} CASCADE")
    finally:
        await con.close()


def cmd_migrate(args: argparse.Namespace) -> int:
    cfg = gateway_config()
    print("[db] applying migrations")
    command.upgrade(alembic_config(cfg.database_url), args.revision)
    print("[db] migrations complete")
    return 0


def cmd_reset(args: argparse.Namespace, *, ask: Callable[[str], str] = input) -> int:
    if not args.yes:
        answer = ask("This will DELETE ALL DATA in your database. Are you sure? (yes/no): ")
        if answer.strip().lower() != "yes":
            print("[db] reset cancelled")
            return 1
    cfg = gateway_config()
    asyncio.run(drop_tables(cfg.database_url))
    print("[db] tables dropped; run `wagateway-db migrate` to recreate them")
    return 0


COMMANDS = {
    "migrate": cmd_migrate,
    "reset": cmd_reset,
}


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Manage the gateway database")
    subparsers = parser.add_subparsers(dest="command", required=True)

    migrate_parser = subparsers.add_parser("migrate", help="Upgrade the schema")
    migrate_parser.add_argument("--revision", default="head", help="Target revision")

    reset_parser = subparsers.add_parser("reset", help="Drop every gateway table")
    reset_parser.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    handler = COMMANDS.get(args.command)
    if handler is None:
        print(f"[db] unsupported command: {args.command}", file=sys.stderr)
        return 1
    return handler(args)


if __name__ == "__main__":
    sys.exit(main())

"""CLI entry point for hiraethctl: user administration tool."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import sys
from pathlib import Path

from hiraeth.auth import hash_secret
from hiraeth.config import HiraethConfig, load_config
from hiraeth.errors import StorageError
from hiraeth.metadata import create_object_store


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="hiraethctl",
        description="Administration tools for Hiraeth",
    )
    parser.add_argument(
        "--config", type=Path, default=None,
        help="Config file path (default: hiraeth.yaml, then /etc/hiraeth/hiraeth.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    user_parser = subparsers.add_parser("user", aliases=["u"], help="Manage users")
    user_commands = user_parser.add_subparsers(dest="user_command", required=True)

    add_parser = user_commands.add_parser("add", aliases=["create"], help="Create users")
    add_parser.add_argument("names", nargs="+", metavar="NAME")
    add_parser.add_argument(
        "--password-stdin", action="store_true", default=False,
        help="Read one password per user from stdin instead of prompting",
    )

    remove_parser = user_commands.add_parser("remove", aliases=["rm"], help="Delete users")
    remove_parser.add_argument("names", nargs="+", metavar="NAME")

    user_commands.add_parser("list", aliases=["ls"], help="List users")

    return parser.parse_args(argv)


def _read_password(name: str, from_stdin: bool) -> str:
    if from_stdin:
        return sys.stdin.readline().rstrip("\n")
    password = getpass.getpass(f"Enter password for new user {name}: ")
    confirm = getpass.getpass("Repeat password: ")
    if password != confirm:
        raise ValueError("passwords do not match")
    return password


async def _add_users(config: HiraethConfig, names: list[str], from_stdin: bool) -> int:
    store = create_object_store(config.metadata)
    await store.init_db()
    status = 0
    try:
        for name in names:
            try:
                password = _read_password(name, from_stdin)
            except ValueError as e:
                print(f"Error: {name}: {e}", file=sys.stderr)
                status = 1
                continue
            if not password:
                print(f"Error: {name}: empty password", file=sys.stderr)
                status = 1
                continue
            password_hash = hash_secret(password, rounds=config.auth.bcrypt_rounds)
            try:
                user_id = await store.create_user(name, password_hash)
            except StorageError as e:
                print(f"Error: {e.message}", file=sys.stderr)
                status = 1
                continue
            print(f"Created user {name} (id {user_id})", file=sys.stderr)
    finally:
        await store.close()
    return status


async def _remove_users(config: HiraethConfig, names: list[str]) -> int:
    store = create_object_store(config.metadata)
    await store.init_db()
    status = 0
    try:
        for name in names:
            if await store.delete_user(name):
                # Rows cascade; the blobs are swept by the next server start.
                print(f"Removed user {name}", file=sys.stderr)
            else:
                print(f"Error: no such user: {name}", file=sys.stderr)
                status = 1
    finally:
        await store.close()
    return status


async def _list_users(config: HiraethConfig) -> int:
    store = create_object_store(config.metadata)
    await store.init_db()
    try:
        for user in await store.list_users():
            print(f"{user.id}\t{user.name}")
    finally:
        await store.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except FileNotFoundError:
        print(f"Error: config file not found: {args.config}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error reading config: {e}", file=sys.stderr)
        return 1

    if args.user_command in ("add", "create"):
        return asyncio.run(_add_users(config, args.names, args.password_stdin))
    if args.user_command in ("remove", "rm"):
        return asyncio.run(_remove_users(config, args.names))
    return asyncio.run(_list_users(config))


def entry_point() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    entry_point()

"""Command-line interface for HomePlus administration."""

import argparse
import asyncio
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

from homeplus import __version__
from homeplus.config import Settings, StoreType, get_settings
from homeplus.container import Container
from homeplus.exceptions import HomePlusError
from homeplus.logging_config import configure_logging
from homeplus.messages import render_error
from homeplus.repositories.interfaces import HOUSEHOLDS, USERS

T = TypeVar("T")


def get_default_db_path() -> Path:
    """Get the default database path in user's home directory."""
    return Path.home() / ".homeplus" / "homeplus.db"


def _settings_for(db_path: Path) -> Settings:
    return get_settings().model_copy(
        update={"store_type": StoreType.SQLITE, "sqlite_path": db_path}
    )


def _run(db_path: Path, action: Callable[[Container], Awaitable[T]]) -> T:
    async def main() -> T:
        async with Container(settings=_settings_for(db_path)) as container:
            return await action(container)

    return asyncio.run(main())


def _resolve_db_path(args: argparse.Namespace) -> Path:
    return Path(args.database) if args.database else get_default_db_path()


def cmd_init(args: argparse.Namespace) -> int:
    """Initialize a new database."""
    db_path = _resolve_db_path(args)

    if db_path.exists() and not args.force:
        print(f"Database already exists at {db_path}")
        print("Use --force to reinitialize (WARNING: will delete existing data)")
        return 1

    if db_path.exists() and args.force:
        db_path.unlink()

    db_path.parent.mkdir(parents=True, exist_ok=True)

    async def noop(container: Container) -> None:
        return None

    _run(db_path, noop)
    print(f"Initialized database at {db_path}")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Show database status."""
    db_path = _resolve_db_path(args)
    if not db_path.exists():
        print(f"No database found at {db_path}")
        print("Run 'homeplus init' to create a new database")
        return 1

    async def counts(container: Container) -> tuple[int, int]:
        households = await container.store.list_all(HOUSEHOLDS)
        users = await container.store.list_all(USERS)
        return len(list(households)), len(list(users))

    households, users = _run(db_path, counts)
    print(f"Database: {db_path}")
    print(f"Households: {households}")
    print(f"Users: {users}")
    return 0


def cmd_version(args: argparse.Namespace) -> int:
    """Show version information."""
    print(f"HomePlus v{__version__}")
    return 0


def cmd_household_show(args: argparse.Namespace) -> int:
    """Show one household with its members."""
    db_path = _resolve_db_path(args)
    if not db_path.exists():
        print(f"Error: Database not found at {db_path}")
        return 1

    household = _run(db_path, lambda c: c.registry.get_household(args.household_id))
    if household is None:
        print(f"Error: Household {args.household_id} not found")
        return 1

    expiry = household.invite_code_expiry.isoformat() if household.invite_code_expiry else "never"
    print(f"{household.name} ({household.household_type.value})")
    print("=" * 70)
    print(f"  ID: {household.id}")
    print(f"  Founder: {household.created_by}")
    print(f"  Invite code: {household.invite_code} (expires {expiry})")
    print(f"  Members: {household.member_count}/{household.settings.max_members}")
    for user_id, membership in household.members.items():
        label = membership.display_name or user_id
        print(f"    {label}: {membership.role.value}, {membership.status.value}")
    return 0


def cmd_user_households(args: argparse.Namespace) -> int:
    """List the households a user belongs to."""
    db_path = _resolve_db_path(args)
    if not db_path.exists():
        print(f"Error: Database not found at {db_path}")
        return 1

    households = _run(db_path, lambda c: c.registry.get_user_households(args.user_id))
    if not households:
        print("No households found.")
        return 0

    for household in households:
        role = household.role_of(args.user_id)
        print(f"  {household.id}  {household.name}  [{role.value if role else 'not a member'}]")
    return 0


def cmd_sweep(args: argparse.Namespace) -> int:
    """Check (and by default repair) household/user membership links."""
    db_path = _resolve_db_path(args)
    if not db_path.exists():
        print(f"Error: Database not found at {db_path}")
        return 1

    report = _run(db_path, lambda c: c.sweeper.sweep(repair=not args.dry_run))
    print(f"Households scanned: {report.households_scanned}")
    print(f"Users scanned: {report.users_scanned}")
    print(f"Missing back-references: {len(report.missing_backrefs)}")
    print(f"Dangling back-references: {len(report.dangling_backrefs)}")
    print(f"Orphan members: {len(report.orphan_members)}")
    for link in report.orphan_members:
        print(f"    {link.user_id} in {link.household_id}")
    if args.dry_run:
        return 0 if report.is_consistent else 1
    print(f"Repaired: {report.repaired}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="homeplus",
        description="HomePlus - shared household membership administration",
    )
    parser.add_argument(
        "--database",
        "-d",
        help="Path to SQLite database file",
        default=None,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    init_parser = subparsers.add_parser("init", help="Initialize a new database")
    init_parser.add_argument(
        "--force",
        "-f",
        action="store_true",
        help="Force reinitialization (deletes existing data)",
    )
    init_parser.set_defaults(func=cmd_init)

    status_parser = subparsers.add_parser("status", help="Show database status")
    status_parser.set_defaults(func=cmd_status)

    version_parser = subparsers.add_parser("version", help="Show version")
    version_parser.set_defaults(func=cmd_version)

    household_parser = subparsers.add_parser("household", help="Household commands")
    household_subparsers = household_parser.add_subparsers(dest="household_command")
    show_parser = household_subparsers.add_parser("show", help="Show a household")
    show_parser.add_argument("household_id", help="Household ID")
    show_parser.set_defaults(func=cmd_household_show)

    user_parser = subparsers.add_parser("user", help="User commands")
    user_subparsers = user_parser.add_subparsers(dest="user_command")
    user_households_parser = user_subparsers.add_parser(
        "households", help="List a user's households"
    )
    user_households_parser.add_argument("user_id", help="User ID")
    user_households_parser.set_defaults(func=cmd_user_households)

    sweep_parser = subparsers.add_parser(
        "sweep", help="Reconcile household members with user back-references"
    )
    sweep_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report inconsistencies without repairing them",
    )
    sweep_parser.set_defaults(func=cmd_sweep)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    configure_logging()
    try:
        return args.func(args)
    except HomePlusError as e:
        print(f"Error: {render_error(e)}")
        return 1


if __name__ == "__main__":
    sys.exit(main())

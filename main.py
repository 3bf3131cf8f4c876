#!/usr/bin/env python3
"""
AuthGate operator CLI -- inspect and clear gate counters without the API.

Usage:
  python main.py status alice@example.com
  python main.py status alice@example.com --ip 203.0.113.7
  python main.py unlock alice@example.com
  python main.py unlock alice@example.com --ip 203.0.113.7
  python main.py set-role alice@example.com admin

Counters live in the store named by REDIS_URL. Without REDIS_URL every
process counts on its own, so this CLI cannot see or clear the API's
counters; the commands say so and exit non-zero.
"""

import argparse
import asyncio
import ipaddress
import sys
from typing import Optional

from auth.lockout import LockoutTracker
from auth.models import ROLES
from auth.store import UserStore
from core.config import Settings, get_settings
from core.events import SecurityEvents, report_security_event
from counters.failover import build_counter_store
from counters.keys import SIGNIN_ROUTE, SIGNUP_ROUTE, normalize_identity, rate_limit_key
from counters.store import CounterStore

_ROUTES = (("signin_rate_limit", SIGNIN_ROUTE), ("signup_rate_limit", SIGNUP_ROUTE))


async def show_status(store: CounterStore, settings: Settings, email: str, ip: Optional[str] = None) -> list[str]:
    """Return human-readable lines describing the counters for email (and ip)."""
    tracker = LockoutTracker(store, settings.lockout_max_attempts, settings.lockout_window_seconds)
    failures = await tracker.get_failure_count(email)
    state = "LOCKED" if failures >= tracker.max_attempts else "ok"
    lines = [f"  lockout:{normalize_identity(email)}  {failures}/{tracker.max_attempts}  {state}"]
    if ip:
        for _, route in _ROUTES:
            count = await store.get(rate_limit_key(route, ip)) or 0
            lines.append(f"  {rate_limit_key(route, ip)}  {count}/{settings.strict_rate_limit_max}")
    return lines


async def unlock(store: CounterStore, settings: Settings, email: str, ip: Optional[str] = None) -> list[str]:
    """Clear the lockout counter for email and, with ip, its auth rate-limit counters."""
    tracker = LockoutTracker(store, settings.lockout_max_attempts, settings.lockout_window_seconds)
    await tracker.reset(email)
    cleared = ["lockout"]
    if ip:
        for purpose, route in _ROUTES:
            await store.reset(rate_limit_key(route, ip))
            cleared.append(purpose)
    report_security_event(
        SecurityEvents.ADMIN_UNLOCK, email=normalize_identity(email), client_ip=ip, cleared=cleared, via="cli"
    )
    return cleared


async def _run_counter_command(args: argparse.Namespace, settings: Settings) -> int:
    store = build_counter_store(settings)
    try:
        if args.command == "status":
            for line in await show_status(store, settings, args.email, args.ip):
                print(line)
        else:
            cleared = await unlock(store, settings, args.email, args.ip)
            print(f"  Cleared: {', '.join(cleared)}")
    finally:
        await store.close()
    return 0


def _set_role(settings: Settings, email: str, role: str) -> int:
    store = UserStore(settings.database_url)
    try:
        user = store.get_by_email(normalize_identity(email))
        if user is None:
            print(f"  [!] No user with email '{email}'.")
            return 1
        store.set_role(user.id, role)
        print(f"  {user.email} is now '{role}'.")
        return 0
    finally:
        store.close()


def _ip(value: str) -> str:
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        raise argparse.ArgumentTypeError(f"'{value}' is not an IP address")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="authgate",
        description="Inspect and clear AuthGate lockout and rate-limit counters.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py status alice@example.com --ip 203.0.113.7
  python main.py unlock alice@example.com
  REDIS_URL=redis://localhost:6379/0 python main.py unlock alice@example.com --ip 203.0.113.7
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("status", "Show the failure count for an email (and rate counters for --ip)"),
        ("unlock", "Clear the lockout for an email (and rate counters for --ip)"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("email", metavar="EMAIL", help="Account email (case-insensitive)")
        cmd.add_argument("--ip", type=_ip, default=None, metavar="IP", help="Client IP whose auth counters to include")

    role = sub.add_parser("set-role", help="Change a user's role (bootstrap the first admin)")
    role.add_argument("email", metavar="EMAIL")
    role.add_argument("role", choices=sorted(ROLES))
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()

    if args.command == "set-role":
        return _set_role(settings, args.email, args.role)

    if not settings.redis_url:
        print("  [!] REDIS_URL is not set. Counters are per-process; nothing to inspect from here.")
        return 2
    return asyncio.run(_run_counter_command(args, settings))


if __name__ == "__main__":
    sys.exit(main())

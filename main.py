#!/usr/bin/env python3
"""
EventDesk -- administration CLI.

Usage:
  python main.py seed --users data/users.csv
  python main.py seed --users data/users.csv --events data/events.csv --send-emails
  python main.py seed --users data/users.csv --auto-verify
  python main.py deseed --yes
  python main.py issue-verification someone@campus.edu --send

Environment variables (see core/config.py for the full list):
  DATABASE_URL   SQLAlchemy URL. Defaults to SQLite next to auth/store.py.
  REDIS_URL      Required for verification links issued here to work in the
                 API: the in-process cache dies with this process.
  JWT_SECRET / JWT_REFRESH_SECRET, or DEBUG=true to auto-generate them.
"""

import argparse
import logging
import sys
from pathlib import Path

from auth.engine import AuthEngine
from auth.mailer import EmailSender, verification_link
from auth.models import Rejected, Role
from auth.provisioning import parse_users_csv, seed_users
from auth.store import DEFAULT_DB_URL, UserStore
from cache.store import MemoryTokenCache, build_token_cache
from core.config import get_settings
from events.ingest import parse_events_csv, seed_events
from events.store import EventStore

logger = logging.getLogger("eventdesk.cli")


def _read_csv(path: str) -> str:
    """Read a CSV file, refusing anything that is not a regular file."""
    file_path = Path(path).resolve()
    if not file_path.is_file():
        raise SystemExit(f"  [!] '{path}' is not a readable file.")
    return file_path.read_text(encoding="utf-8-sig")


def _build(settings):
    db_url = settings.database_url or DEFAULT_DB_URL
    user_store = UserStore(db_url)
    cache = build_token_cache(settings.redis_url, socket_timeout=settings.redis_socket_timeout)
    event_store = EventStore(
        db_url,
        cache,
        list_ttl=settings.event_list_cache_ttl_seconds,
        item_ttl=settings.event_cache_ttl_seconds,
    )
    engine = AuthEngine.from_settings(user_store, cache, settings)
    return user_store, event_store, cache, engine


def _warn_ephemeral(cache) -> None:
    if isinstance(cache, MemoryTokenCache):
        print("  [!] REDIS_URL is not set: verification tokens issued now will not be")
        print("      visible to the API server. Set REDIS_URL before issuing links.")


def cmd_seed(args, settings) -> int:
    user_store, event_store, cache, engine = _build(settings)
    mailer = EmailSender.from_settings(settings)
    try:
        records = parse_users_csv(_read_csv(args.users))
        seeded = seed_users(user_store, engine, records, auto_verify=args.auto_verify)
        if any(not s.created for s in seeded):
            # Cached events embed their lead's profile.
            event_store.invalidate()
        if any(not s.user.is_verified for s in seeded):
            _warn_ephemeral(cache)

        print(f"\n{'EMAIL':<40} {'ROLE':<18} {'UID':<12} INITIAL PASSWORD")
        print("─" * 90)
        for entry in seeded:
            user = entry.user
            password = entry.password if entry.created else "(unchanged)"
            print(f"{user.email:<40} {user.role.value:<18} {user.uid or '':<12} {password}")
            if (
                args.send_emails
                and entry.created
                and user.role is Role.CAMPUS_AMBASSADOR
                and user.verification_token
            ):
                link = verification_link(settings.app_url, user.verification_token)
                if not mailer.send_verification_email(user.email, user.name, link):
                    print(f"  [!] Verification email to {user.email} failed")

        if args.events:
            written = seed_events(event_store, user_store, parse_events_csv(_read_csv(args.events)))
            print(f"\n{written} events seeded.")
    finally:
        cache.close()
        event_store.close()
        user_store.close()
    return 0


def cmd_deseed(args, settings) -> int:
    if not args.yes:
        print("Refusing to delete all users and events without --yes.")
        return 1
    user_store, event_store, cache, _ = _build(settings)
    try:
        events_removed = event_store.delete_all()
        users_removed = user_store.delete_all()
    finally:
        cache.close()
        event_store.close()
        user_store.close()
    print(f"Removed {events_removed} events and {users_removed} users.")
    return 0


def cmd_issue_verification(args, settings) -> int:
    user_store, event_store, cache, engine = _build(settings)
    try:
        result = engine.resend_verification(args.email)
        if isinstance(result, Rejected):
            print(f"  [!] {result.message}")
            return 1
        if result.already_verified:
            print(f"{args.email} is already verified; no token issued.")
            return 0
        _warn_ephemeral(cache)
        link = verification_link(settings.app_url, result.token)
        print(f"Verification link: {link}")
        if args.send:
            user = user_store.get_by_email(args.email)
            mailer = EmailSender.from_settings(settings)
            if not mailer.send_verification_email(args.email, user.name if user else args.email, link):
                print("  [!] Sending the verification email failed.")
                return 1
    finally:
        cache.close()
        event_store.close()
        user_store.close()
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="eventdesk",
        description="EventDesk administration: seed staff and events, issue verification links.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    seed = sub.add_parser("seed", help="Create or update users (and optionally events) from CSV")
    seed.add_argument("--users", required=True, metavar="PATH", help="Staff CSV export")
    seed.add_argument("--events", metavar="PATH", help="Events CSV (domain leads must already exist)")
    seed.add_argument(
        "--auto-verify",
        action="store_true",
        help="Mark campus ambassadors verified instead of issuing verification tokens",
    )
    seed.add_argument(
        "--send-emails",
        action="store_true",
        help="Email a verification link to every newly created campus ambassador",
    )
    seed.set_defaults(handler=cmd_seed)

    deseed = sub.add_parser("deseed", help="Delete ALL events and users")
    deseed.add_argument("--yes", action="store_true", help="Confirm the deletion")
    deseed.set_defaults(handler=cmd_deseed)

    issue = sub.add_parser("issue-verification", help="Issue a fresh verification link for an unverified user")
    issue.add_argument("email")
    issue.add_argument("--send", action="store_true", help="Also email the link to the user")
    issue.set_defaults(handler=cmd_issue_verification)

    args = parser.parse_args()
    if not getattr(args, "handler", None):
        parser.print_help()
        return

    logging.basicConfig(level=logging.INFO, format="%(levelname)-5s %(name)s %(message)s")
    sys.exit(args.handler(args, get_settings()))


if __name__ == "__main__":
    main()

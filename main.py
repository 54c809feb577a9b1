#!/usr/bin/env python3
"""
teamauth -- operator command line.

Usage:
  python main.py permissions ADMIN
  python main.py set-role alice@example.com TEAM_LEAD
  python main.py unrevoke <refresh-token>
  python main.py purge

Reads the same environment / .env as the API (DATABASE_URL, REDIS_URL,
JWT_SECRET, ...). Operator commands act directly on the stores and are not
gated by the change_user_roles permission.
"""

import argparse
import sys

from auth.models import SystemRole
from auth.permissions import AuthorizationModel
from auth.store import UserStore
from core.config import get_settings
from core.errors import RevocationStoreError


def _open_user_store() -> UserStore:
    cfg = get_settings()
    return UserStore(cfg.database_url) if cfg.database_url else UserStore()


def _open_revocations():
    # Deferred: api.main configures logging and builds the FastAPI app on import.
    from api.main import make_revocation_store

    return make_revocation_store(get_settings())


def cmd_permissions(args: argparse.Namespace) -> int:
    perms = AuthorizationModel().permissions_for(args.role)
    print(f"  {args.role} ({len(perms)} permissions)")
    for name in sorted(perms):
        print(f"    - {name}")
    return 0


def cmd_set_role(args: argparse.Namespace) -> int:
    store = _open_user_store()
    try:
        user = store.get_by_email(args.email)
        if user is None:
            print(f"  [!] No user with email '{args.email}'.")
            return 1
        store.update_user(user.id, role=SystemRole(args.role))
        print(f"  {args.email}: {user.role.value} -> {args.role}")
        return 0
    finally:
        store.close()


def cmd_unrevoke(args: argparse.Namespace) -> int:
    from auth.tokens import TokenService

    store = _open_user_store()
    revocations = _open_revocations()
    try:
        TokenService(store, revocations).unrevoke(args.token)
    except RevocationStoreError as exc:
        print(f"  [!] Revocation store error: {exc}")
        return 1
    finally:
        revocations.close()
        store.close()
    print("  Token removed from blacklist.")
    return 0


def cmd_purge(args: argparse.Namespace) -> int:
    revocations = _open_revocations()
    try:
        removed = revocations.purge_expired()
    except RevocationStoreError as exc:
        print(f"  [!] Revocation store error: {exc}")
        return 1
    finally:
        revocations.close()
    print(f"  Purged {removed} expired entries.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="teamauth", description="teamauth operator commands")
    sub = parser.add_subparsers(dest="command", required=True)

    roles = [r.value for r in SystemRole]

    p = sub.add_parser("permissions", help="List the permissions of a system role")
    p.add_argument("role", choices=roles)
    p.set_defaults(func=cmd_permissions)

    p = sub.add_parser("set-role", help="Set a user's system role")
    p.add_argument("email")
    p.add_argument("role", choices=roles)
    p.set_defaults(func=cmd_set_role)

    p = sub.add_parser("unrevoke", help="Remove a refresh token from the blacklist")
    p.add_argument("token")
    p.set_defaults(func=cmd_unrevoke)

    p = sub.add_parser("purge", help="Delete expired blacklist entries")
    p.set_defaults(func=cmd_purge)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())

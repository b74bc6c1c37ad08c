#!/usr/bin/env python3
"""
SessionGuard admin CLI -- account and device administration without the API.

Usage:
  python main.py create-user alice alice@example.com --role editor
  python main.py devices 42
  python main.py revoke 42 laptop-1
  python main.py logout-all 42
  python main.py block 42
  python main.py unblock 42

Reads the same environment as the API (DATABASE_URL, REDIS_URL, SECRET_KEY,
...) via core.config.get_settings(), so revocations made here take effect in
the running service immediately.
"""

from __future__ import annotations

import argparse
import getpass
import sys
from typing import Optional

from auth.models import ROLE_PERMISSIONS
from auth.service import AuthService, build_auth_service
from core.config import get_settings
from core.errors import AuthError


def _cmd_create_user(auth: AuthService, args: argparse.Namespace) -> None:
    password = args.password or getpass.getpass("Password: ")
    user = auth.register(args.username, args.email, password)
    if args.role != user.role:
        auth.users.update_user(user.id, role=args.role)
    print(f"  Created user {user.username} (id={user.id}, role={args.role}). Password change required on first login.")


def _cmd_devices(auth: AuthService, args: argparse.Namespace) -> None:
    auth.get_user(args.user_id)
    devices = auth.list_devices(args.user_id)
    if not devices:
        print("  No devices.")
        return
    print(f"  {'DEVICE ID':<24} {'NAME':<24} {'TYPE':<10} {'ACTIVE':<7} {'TRUSTED':<8} LAST LOGIN")
    for d in devices:
        print(
            f"  {d.device_id:<24} {d.device_name:<24} {d.device_type:<10} "
            f"{'yes' if d.is_active else 'no':<7} {'yes' if d.is_trusted else 'no':<8} {d.last_login_at or '-'}"
        )


def _cmd_revoke(auth: AuthService, args: argparse.Namespace) -> None:
    auth.revoke_device(args.user_id, args.device_id)
    print(f"  Revoked device {args.device_id} for user {args.user_id}.")


def _cmd_logout_all(auth: AuthService, args: argparse.Namespace) -> None:
    auth.get_user(args.user_id)
    auth.logout_all_devices(args.user_id)
    print(f"  Signed user {args.user_id} out of all devices.")


def _cmd_block(auth: AuthService, args: argparse.Namespace) -> None:
    auth.set_blocked(args.user_id, True)
    print(f"  Blocked user {args.user_id} and signed them out of all devices.")


def _cmd_unblock(auth: AuthService, args: argparse.Namespace) -> None:
    auth.set_blocked(args.user_id, False)
    print(f"  Unblocked user {args.user_id}.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sessionguard",
        description="Account and device administration for SessionGuard.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("create-user", help="Register a local account")
    p.add_argument("username")
    p.add_argument("email")
    p.add_argument("--role", choices=sorted(ROLE_PERMISSIONS), default="reader")
    p.add_argument("--password", help="Password (prompted if omitted; avoid on shared hosts)")
    p.set_defaults(func=_cmd_create_user)

    p = sub.add_parser("devices", help="List a user's devices")
    p.add_argument("user_id", type=int)
    p.set_defaults(func=_cmd_devices)

    p = sub.add_parser("revoke", help="Revoke one device of a user")
    p.add_argument("user_id", type=int)
    p.add_argument("device_id")
    p.set_defaults(func=_cmd_revoke)

    p = sub.add_parser("logout-all", help="Sign a user out of every device")
    p.add_argument("user_id", type=int)
    p.set_defaults(func=_cmd_logout_all)

    p = sub.add_parser("block", help="Lock an account and sign it out everywhere")
    p.add_argument("user_id", type=int)
    p.set_defaults(func=_cmd_block)

    p = sub.add_parser("unblock", help="Unlock an account")
    p.add_argument("user_id", type=int)
    p.set_defaults(func=_cmd_unblock)

    return parser


def main(argv: Optional[list[str]] = None, auth: Optional[AuthService] = None) -> int:
    args = build_parser().parse_args(argv)
    owns_service = auth is None
    if auth is None:
        auth = build_auth_service(get_settings())
    try:
        args.func(auth, args)
    except AuthError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        if owns_service:
            auth.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Warden -- operator command line for the authentication store.

Usage:
  python main.py create-admin --email root@example.com --name "Root"
  python main.py unlock alice@example.com
  python main.py revoke-sessions alice@example.com
  python main.py purge

Reads the same environment / .env settings as the API (DATABASE_URL,
SECRET_KEY, ...). Every state-changing command is written to the audit log
with actor "cli".
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.audit import FAILURE, SUCCESS
from auth.errors import AuthFailure
from auth.models import IdentityStatus, Role
from auth.service import AuthService
from core.config import get_settings

CLI_ACTOR = "cli"


def _read_password(prompt: str = "Password: ") -> str:
    """Prompt twice without echo. Returns "" if the entries differ."""
    first = getpass.getpass(prompt)
    second = getpass.getpass("Repeat password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        return ""
    return first


def create_admin(service: AuthService, email: str, name: str, password: Optional[str]) -> int:
    """Create a SUPER_ADMIN identity. Used to bootstrap an empty store."""
    password = password or _read_password()
    if not password:
        return 1
    result = service.register(email, password, name, role=Role.SUPER_ADMIN, status=IdentityStatus.ACTIVE)
    if isinstance(result, AuthFailure):
        print(f"  [!] Could not create admin: {result.reason}")
        for violation in result.violations:
            print(f"      - {violation}")
        return 1
    service.audit.record(CLI_ACTOR, "cli.create_admin", "identity", resource_id=result.id, outcome=SUCCESS)
    print(f"  Created super admin {result.email} ({result.id})")
    return 0


def unlock(service: AuthService, email: str) -> int:
    identity = service.identities.get_by_email(email)
    if identity is None:
        service.audit.record(CLI_ACTOR, "cli.unlock", "identity", outcome=FAILURE, detail={"reason": "not_found"})
        print(f"  [!] No identity with email {email}")
        return 1
    service.lockout.unlock(identity.id)
    service.audit.record(CLI_ACTOR, "cli.unlock", "identity", resource_id=identity.id, outcome=SUCCESS)
    print(f"  Unlocked {identity.email} (was {identity.failed_attempts} failed attempt(s))")
    return 0


def revoke_sessions(service: AuthService, email: str) -> int:
    identity = service.identities.get_by_email(email)
    if identity is None:
        print(f"  [!] No identity with email {email}")
        return 1
    revoked = service.sessions.revoke_all(identity.id)
    service.audit.record(
        CLI_ACTOR, "cli.revoke_sessions", "identity", resource_id=identity.id, outcome=SUCCESS, detail={"sessions_revoked": revoked}
    )
    print(f"  Revoked {revoked} session(s) for {identity.email}")
    return 0


def purge(service: AuthService) -> int:
    purged = service.state.purge_expired()
    print(f"  Purged {purged} expired row(s)")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="warden",
        description="Warden -- authentication store administration.",
        epilog=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_admin = sub.add_parser("create-admin", help="Create a super admin identity")
    p_admin.add_argument("--email", required=True, help="Login email for the new admin")
    p_admin.add_argument("--name", required=True, help="Display name")
    p_admin.add_argument(
        "--password",
        default=None,
        help="Password (prompted without echo when omitted; avoid passing it on shared hosts)",
    )

    p_unlock = sub.add_parser("unlock", help="Clear lockout and failed-attempt counter")
    p_unlock.add_argument("email")

    p_revoke = sub.add_parser("revoke-sessions", help="Sign an identity out of every device")
    p_revoke.add_argument("email")

    sub.add_parser("purge", help="Delete expired sessions, counters and single-use state")

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    service = AuthService.from_settings(get_settings())
    try:
        if args.command == "create-admin":
            return create_admin(service, args.email, args.name, args.password)
        if args.command == "unlock":
            return unlock(service, args.email)
        if args.command == "revoke-sessions":
            return revoke_sessions(service, args.email)
        return purge(service)
    finally:
        service.close()


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Merchant account administration

Session issuance lives outside the API; this script is how operators create
merchant accounts and hand out API session tokens.

Usage:
    python scripts/manage_merchants.py create --email shop@example.com --password secret [--name "Shop"]
    python scripts/manage_merchants.py issue-session --email shop@example.com
    python scripts/manage_merchants.py cleanup-sessions
    python scripts/manage_merchants.py generate-key
"""
import sys
import argparse
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from app.models.base import SessionLocal, init_db
from app.models.merchant import Merchant
from app.services import auth_service
from app.utils.crypto import generate_key
from app.utils.logger import log


def create(args) -> int:
    db = SessionLocal()
    try:
        merchant = auth_service.create_merchant(db, args.email, args.password, args.name)
    except ValueError as e:
        log.error(str(e))
        return 1
    finally:
        db.close()
    print(f"Created merchant {merchant.id} ({merchant.email})")
    return 0


def issue_session(args) -> int:
    db = SessionLocal()
    try:
        merchant = db.query(Merchant).filter(Merchant.email == args.email.lower().strip()).first()
        if not merchant:
            log.error(f"No merchant with email {args.email}")
            return 1
        token = auth_service.create_session(db, merchant.id)
    finally:
        db.close()
    print(token)
    return 0


def cleanup_sessions(args) -> int:
    db = SessionLocal()
    try:
        removed = auth_service.cleanup_expired(db)
    finally:
        db.close()
    print(f"Removed {removed} expired sessions")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Merchant account administration")
    sub = parser.add_subparsers(dest="command", required=True)

    p_create = sub.add_parser("create", help="Create a merchant account")
    p_create.add_argument("--email", required=True)
    p_create.add_argument("--password", required=True)
    p_create.add_argument("--name", default=None)
    p_create.set_defaults(func=create)

    p_session = sub.add_parser("issue-session", help="Print a new API session token")
    p_session.add_argument("--email", required=True)
    p_session.set_defaults(func=issue_session)

    p_cleanup = sub.add_parser("cleanup-sessions", help="Delete expired sessions")
    p_cleanup.set_defaults(func=cleanup_sessions)

    p_key = sub.add_parser("generate-key", help="Print a new ENCRYPTION_KEY")
    p_key.set_defaults(func=lambda args: print(generate_key()) or 0)

    args = parser.parse_args()
    if args.command != "generate-key":
        init_db()
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Grant credits to users or list user balances.

Usage:
    # Grant tokens (merged into the active subscription, or a new manual top-up)
    python grant_credits.py --email user@example.com --tokens 5000

    # Grant with a custom validity window
    python grant_credits.py --email user@example.com --tokens 5000 --days 30

    # List users and their balances
    python grant_credits.py --list
"""

import argparse
import sys
import os

# Add parent directory to path to import backend modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.config import settings
from app.core.logging import setup_logging
from app.db.session import SessionLocal
from app.services.admin_service import grant_credits, get_user_by_email, list_users_with_balances


def grant(email: str, tokens: int, days: int, db=None) -> bool:
    """Grant tokens to the user with this email"""
    should_close = db is None
    db = db or SessionLocal()
    try:
        user = get_user_by_email(db, email)
        if not user:
            print(f"❌ User not found: {email}")
            return False

        result = grant_credits(db, user.id, tokens, expires_in_days=days)
        if not result.ok:
            print(f"❌ {result.code}: {result.message}")
            return False

        subscription = result.value
        print(f"✅ Granted {tokens} tokens to {email}")
        print(f"   Balance: {subscription.token_balance} / {subscription.token_allowance}")
        print(f"   Expires: {subscription.expires_at}")
        return True
    finally:
        if should_close:
            db.close()


def list_balances(search: str = None, db=None) -> bool:
    should_close = db is None
    db = db or SessionLocal()
    try:
        page = list_users_with_balances(db, page=1, limit=200, search=search)
        for user in page["users"]:
            balance = user["balance"]
            print(
                f"{user['email']:<40} {balance['credits_remaining']:>8} credits "
                f"({balance['status'] or 'no subscription'})"
            )
        print(f"\n{len(page['users'])} of {page['total']} users")
        return True
    finally:
        if should_close:
            db.close()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description='Grant credits or list user balances',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument('--email', help='User email address')
    parser.add_argument('--tokens', type=int, help='Number of ledger tokens to grant')
    parser.add_argument(
        '--days', type=int, default=settings.MANUAL_GRANT_DEFAULT_DAYS,
        help=f'Days until the grant expires (default: {settings.MANUAL_GRANT_DEFAULT_DAYS})'
    )
    parser.add_argument('--list', action='store_true', help='List users and balances (filter with --email)')

    args = parser.parse_args(argv)
    setup_logging()

    if args.list:
        return 0 if list_balances(search=args.email) else 1

    if not args.email or args.tokens is None:
        print("❌ Error: --email and --tokens are required to grant credits")
        parser.print_help()
        return 1

    return 0 if grant(args.email, args.tokens, args.days) else 1


if __name__ == '__main__':
    sys.exit(main())

#!/usr/bin/env python3
"""
Issue and manage license keys from the command line.

Usage:
    # Issue a new key
    python manage_licenses.py --issue --user-no 0042 --user-name "Example Shop"

    # Move a key to another site
    python manage_licenses.py --reset ABCDEFGHIJKLMNOPQRSTUVWXYZ012345

    # Revoke a key
    python manage_licenses.py --deactivate ABCDEFGHIJKLMNOPQRSTUVWXYZ012345

    # List every key
    python manage_licenses.py --list
"""

import argparse
import os
import sys

# Add parent directory to path to import backend modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from igbridge.core.errors import BrokerError
from igbridge.db.session import session_scope
from igbridge.db.sql_repositories import SqlLicenseRepository
from igbridge.services.license_service import LicenseService


def _service(db) -> LicenseService:
    # No subscription lookup: admin operations never gate on billing
    return LicenseService(SqlLicenseRepository(db))


def issue_license(user_no=None, user_name=None, session_factory=None):
    """Issue a new unbound key"""
    with session_scope(session_factory) as db:
        license = _service(db).generate(user_no, user_name)
    print(f"✅ Issued license {license.license_key}")
    if user_name or user_no:
        print(f"   Owner: {user_name or '-'} ({user_no or '-'})")
    return license.license_key


def reset_license(license_key: str, session_factory=None) -> bool:
    """Clear the bound domain so the key can activate on another site"""
    try:
        with session_scope(session_factory) as db:
            license = _service(db).find_by_key(license_key)
            previous_domain = license.domain
            _service(db).reset_domain(license_key)
    except BrokerError as e:
        print(f"❌ {e.code}: {e.message}")
        return False

    print(f"✅ Reset license {license_key[:8]}...")
    print(f"   Domain: {previous_domain or '(none)'} → (unbound)")
    return True


def deactivate_license(license_key: str, session_factory=None) -> bool:
    try:
        with session_scope(session_factory) as db:
            _service(db).deactivate(license_key)
    except BrokerError as e:
        print(f"❌ {e.code}: {e.message}")
        return False

    print(f"✅ Deactivated license {license_key[:8]}...")
    return True


def list_licenses(session_factory=None) -> int:
    with session_scope(session_factory) as db:
        rows = _service(db).list()

    if not rows:
        print("No licenses issued yet")
        return 0

    for row in rows:
        state = "active" if row["isActive"] else "inactive"
        print(f"{row['licenseKey']}  {state:<8}  {row['domain'] or '(unbound)':<30}  {row['userName'] or ''}")
    print(f"\n{len(rows)} license(s)")
    return len(rows)


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Issue and manage license keys',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Issue a key for a customer
  python %(prog)s --issue --user-no 0042 --user-name "Example Shop"

  # Let a customer move to a new domain
  python %(prog)s --reset ABCDEFGHIJKLMNOPQRSTUVWXYZ012345
        """
    )

    parser.add_argument('--issue', action='store_true', help='Issue a new license key')
    parser.add_argument('--user-no', help='Customer number stored with an issued key')
    parser.add_argument('--user-name', help='Customer name stored with an issued key')
    parser.add_argument('--reset', metavar='KEY', help='Unbind the domain of a key')
    parser.add_argument('--deactivate', metavar='KEY', help='Deactivate a key')
    parser.add_argument('--list', action='store_true', help='List all keys')

    args = parser.parse_args(argv)

    actions = sum([args.issue, bool(args.reset), bool(args.deactivate), args.list])

    if actions == 0:
        print("❌ Error: Must specify one action (--issue, --reset, --deactivate or --list)")
        parser.print_help()
        return 1

    if actions > 1:
        print("❌ Error: Can only specify one action at a time")
        return 1

    if args.issue:
        issue_license(args.user_no, args.user_name)
        success = True
    elif args.reset:
        success = reset_license(args.reset)
    elif args.deactivate:
        success = deactivate_license(args.deactivate)
    else:
        list_licenses()
        success = True

    return 0 if success else 1


if __name__ == '__main__':
    sys.exit(main())

#!/usr/bin/env python3
"""
Grant or revoke the admin role for a user.

Usage:
    python setup_admin.py --email admin@example.com
    python setup_admin.py --email admin@example.com --revoke
"""

import argparse
import os
import sys

# Add parent directory to path to import backend modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from reelcast.db.session import SessionLocal
from reelcast.models.user import User, ROLE_ADMIN, ROLE_USER


def set_role(email: str, role: str) -> bool:
    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == email.strip().lower()).first()
        if not user:
            print(f"❌ User not found: {email}")
            return False

        if user.role == role:
            print(f"ℹ️  {email} already has role '{role}'")
            return True

        old_role = user.role
        user.role = role
        db.commit()
        print(f"✅ {email}: {old_role} → {role}")
        return True
    except Exception as e:
        print(f"❌ Error: {e}")
        db.rollback()
        return False
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(description="Grant or revoke the admin role")
    parser.add_argument("--email", required=True, help="Email of an existing user")
    parser.add_argument("--revoke", action="store_true", help="Demote the user back to a regular user")
    args = parser.parse_args()

    role = ROLE_USER if args.revoke else ROLE_ADMIN
    return 0 if set_role(args.email, role) else 1


if __name__ == "__main__":
    sys.exit(main())

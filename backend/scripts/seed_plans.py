#!/usr/bin/env python3
"""
Seed the default subscription plans (Basic, Advanced, Expert).

Usage:
    python seed_plans.py
    python seed_plans.py --list
"""

import argparse
import os
import sys

# Add parent directory to path to import backend modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from reelcast.db.session import SessionLocal, init_db
from reelcast.services.subscription_service import list_all_plans, seed_default_plans


def seed():
    db = SessionLocal()
    try:
        created = seed_default_plans(db)
        if created:
            print(f"✅ Created plans: {', '.join(created)}")
        else:
            print("ℹ️  All default plans already exist")
        return True
    except Exception as e:
        print(f"❌ Error: {e}")
        db.rollback()
        return False
    finally:
        db.close()


def show_plans():
    db = SessionLocal()
    try:
        for plan in list_all_plans(db):
            state = "active" if plan["is_active"] else "inactive"
            print(
                f"  {plan['id']:>3}  {plan['name']:<10} ${plan['monthly_price']:.2f}/mo  "
                f"${plan['yearly_price']:.2f}/yr  {plan['minutes_allowed']} min  ({state})"
            )
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(description="Seed default subscription plans")
    parser.add_argument("--list", action="store_true", help="List plans instead of seeding")
    args = parser.parse_args()

    init_db()
    if args.list:
        show_plans()
        return 0
    return 0 if seed() else 1


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Apply time-based subscription transitions. Meant to run from cron.

  - TRIAL past trial_ends_at               -> EXPIRED
  - SUSPENDED past grace_period_ends_at    -> EXPIRED
  - cancel_at_period_end past period end   -> CANCELLED

Usage:
    python scripts/expire_subscriptions.py [--org-id <uuid>] [--reminders]
"""
import sys
import os
import argparse
import uuid

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from app.core.logging import configure_logging
from app.db.session import SessionLocal
from app.services.subscription_lifecycle import expire_lapsed_subscriptions, find_grace_period_reminders


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Expire lapsed trials and grace periods")
    parser.add_argument("--org-id", type=uuid.UUID, default=None, help="Only process one organization")
    parser.add_argument("--reminders", action="store_true", help="Also list grace periods ending soon")
    args = parser.parse_args(argv)

    db = SessionLocal()
    try:
        result = expire_lapsed_subscriptions(db, organization_id=args.org_id)
        print(f"Trials expired:              {result.expired_trials}")
        print(f"Grace periods expired:       {result.expired_grace_periods}")
        print(f"Cancellations finalized:     {result.finalized_cancellations}")
        if result.failed:
            print(f"❌ Failed: {', '.join(str(i) for i in result.failed)}")

        if args.reminders:
            for subscription in find_grace_period_reminders(db, organization_id=args.org_id):
                print(f"⚠️  Grace period ending {subscription.grace_period_ends_at} for cabinet {subscription.cabinet_id}")
    finally:
        db.close()

    return 1 if result.failed else 0


if __name__ == "__main__":
    configure_logging()
    sys.exit(main())

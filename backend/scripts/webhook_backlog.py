#!/usr/bin/env python3
"""
List webhook events that were recorded but never completed successfully.

These rows need manual reconciliation: a side effect failed, the payment was
short, or the worker died mid-pipeline.

Usage:
    python webhook_backlog.py
    python webhook_backlog.py --provider SEPAY --limit 20
    python webhook_backlog.py --show-payload
"""

import argparse
import json
import sys
import os

# Add parent directory to path to import backend modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from docobo.db.session import SessionLocal
from docobo.models import PaymentProvider
from docobo.services.ledger import list_backlog


def print_backlog(provider=None, limit=50, show_payload=False):
    """Print unprocessed webhook events, oldest first"""
    db = SessionLocal()
    try:
        events = list_backlog(db, provider=provider, limit=limit)
        if not events:
            print("✅ No unprocessed webhook events")
            return 0

        print(f"⚠️  {len(events)} unprocessed webhook event(s):")
        for event in events:
            created = event.created_at.isoformat() if event.created_at else "?"
            print(f"   [{event.provider.value}] {event.external_event_id} {event.event_type.value} at {created}")
            print(f"      Error: {event.error_message or '(in flight or worker died)'}")
            if event.subscription_id:
                print(f"      Subscription: {event.subscription_id}")
            if show_payload:
                print(f"      Payload: {json.dumps(event.raw_payload, default=str)}")
        return len(events)
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(description="List unprocessed webhook events")
    parser.add_argument("--provider", choices=[p.value for p in PaymentProvider], help="Only show one provider")
    parser.add_argument("--limit", type=int, default=50, help="Maximum rows to show (default: 50)")
    parser.add_argument("--show-payload", action="store_true", help="Print the raw payload of each event")
    args = parser.parse_args()

    provider = PaymentProvider(args.provider) if args.provider else None
    try:
        count = print_backlog(provider=provider, limit=args.limit, show_payload=args.show_payload)
    except Exception as e:
        print(f"❌ Error: {e}")
        sys.exit(2)

    sys.exit(1 if count else 0)


if __name__ == "__main__":
    main()

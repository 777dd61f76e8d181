#!/usr/bin/env python3
"""Expire stale offers and send condition and closing reminders.

Usage:
    python scripts/run_reminders.py
"""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from estate_direct.config import SessionLocal  # noqa: E402
from estate_direct.services.offers import expire_stale_offers  # noqa: E402
from estate_direct.services.reminders import send_closing_reminders, send_condition_reminders  # noqa: E402


def main() -> None:
    with SessionLocal() as session:
        expired_ids = expire_stale_offers(session)
        conditions = send_condition_reminders(session)
        closings = send_closing_reminders(session)
        session.commit()
    if expired_ids:
        print(f"Expired offers: {', '.join(str(offer_id) for offer_id in expired_ids)}")
    print(f"Condition reminders: {len(conditions)}; closing reminders: {len(closings)}")


if __name__ == "__main__":
    main()

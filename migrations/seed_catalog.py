"""
Seed the fixed daily slots and the default service

Creates the tables if needed, then inserts:
- morning     10:00 - 12:00
- afternoon1  13:00 - 15:00
- afternoon2  15:00 - 17:00
- a default consultation service (PHP 300.00)

Safe to run more than once; existing rows are left untouched.

Run with: python migrations/seed_catalog.py
"""

import logging
import sys
from datetime import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from clinic_booking.config import DEFAULT_CURRENCY  # noqa: E402
from clinic_booking.database import Base, SessionLocal, engine  # noqa: E402
from clinic_booking.models import Service, Slot  # noqa: E402

logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger(__name__)

FIXED_SLOTS = {
    "morning": (time(10, 0), time(12, 0)),
    "afternoon1": (time(13, 0), time(15, 0)),
    "afternoon2": (time(15, 0), time(17, 0)),
}

DEFAULT_SERVICE = {
    "name": "Dental Consultation",
    "description": "General check-up and consultation",
    "price": 300.00,
}


def upgrade():
    Base.metadata.create_all(bind=engine, checkfirst=True)

    db = SessionLocal()
    try:
        for label, (start, end) in FIXED_SLOTS.items():
            if db.query(Slot).filter(Slot.label == label).first():
                logger.info(f"ℹ️  Slot {label} already exists")
                continue
            db.add(Slot(label=label, start_time=start, end_time=end, capacity=1))
            logger.info(f"✅ Added slot {label} ({start:%H:%M} - {end:%H:%M})")

        if db.query(Service).filter(Service.name == DEFAULT_SERVICE["name"]).first():
            logger.info(f"ℹ️  Service {DEFAULT_SERVICE['name']} already exists")
        else:
            db.add(Service(currency=DEFAULT_CURRENCY, **DEFAULT_SERVICE))
            logger.info(f"✅ Added service {DEFAULT_SERVICE['name']}")

        db.commit()
        logger.info("\n✅ Catalog seeded successfully!")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    try:
        upgrade()
    except Exception as e:
        logger.error(f"❌ Seeding failed: {e}")
        sys.exit(1)

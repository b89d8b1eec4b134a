"""Seed the trades table with the service categories homeowners can request."""

from database import SessionLocal, init_db
from models.models import Trade

SEED_DATA = [
    {"name": "Plumbing",      "description": "Leaks, pipes, fixtures, water heaters"},
    {"name": "Electrical",    "description": "Wiring, outlets, lighting, panels"},
    {"name": "HVAC",          "description": "Heating, ventilation and air conditioning"},
    {"name": "Carpentry",     "description": "Framing, trim, doors, cabinets"},
    {"name": "Painting",      "description": "Interior and exterior painting"},
    {"name": "Roofing",       "description": "Repairs, replacement, gutters"},
    {"name": "Landscaping",   "description": "Lawn, garden, hardscape"},
    {"name": "Cleaning",      "description": "Deep cleaning, end of tenancy"},
    {"name": "Handyman",      "description": "Small repairs and odd jobs"},
    {"name": "Appliance Repair", "description": "Washers, dryers, ovens, fridges"},
]


def seed():
    init_db()
    db = SessionLocal()
    added = 0
    skipped = 0

    for trade in SEED_DATA:
        exists = db.query(Trade).filter_by(name=trade["name"]).first()
        if exists:
            skipped += 1
            continue
        db.add(Trade(**trade))
        added += 1

    db.commit()
    db.close()
    print(f"✅ Trades seeded: {added} added, {skipped} already existed.")


if __name__ == "__main__":
    seed()

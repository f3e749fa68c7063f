#!/usr/bin/env python3
"""
Inspection Catalog Seed Script
Loads the default pillars, indicators and threshold config.

Safe to run repeatedly: rows that already exist are left as they are.

Usage:
    python -m scripts.seed_catalog
"""
import sys
import os

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.orm import Session
from inspection_app.database import SessionLocal, init_db
from inspection_app.errors import PersistenceError
from inspection_app.services.catalog import CatalogService


def seed_catalog() -> bool:
    """Seed the inspection catalog into the configured database."""
    # Ensure tables exist
    init_db()

    db: Session = SessionLocal()
    try:
        inserted = CatalogService(db).seed_catalog()
        print("Catalog seeded successfully!")
        print(f"  Pillars: {inserted['pillars']}")
        print(f"  Indicators: {inserted['indicators']}")
        print(f"  Config rows: {inserted['config']}")
        return True

    except PersistenceError as e:
        print(f"Error seeding catalog: {e}")
        return False
    finally:
        db.close()


def main():
    if len(sys.argv) != 1:
        print(__doc__)
        sys.exit(1)

    success = seed_catalog()
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()

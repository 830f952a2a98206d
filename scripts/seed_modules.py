#!/usr/bin/env python3
"""
Seed (or refresh) the module catalog.
Existing modules keep their ids; names, prices and dependencies are updated.
"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from app.core.logging import configure_logging
from app.db.session import SessionLocal, transaction
from app.services.module_catalog import seed_module_catalog


def seed_modules():
    db = SessionLocal()

    try:
        print("🌱 Seeding module catalog...")
        with transaction(db):
            modules = seed_module_catalog(db)

        for module in modules:
            kind = "core" if module.is_core else "premium"
            deps = ", ".join(module.dependencies) if module.dependencies else "-"
            print(f"  {module.code:<20} {kind:<8} {module.monthly_price:>8}/mo {module.yearly_price:>9}/yr  requires: {deps}")

        print(f"✅ Seeded {len(modules)} modules.")
    except Exception as e:
        print(f"❌ Error seeding modules: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    configure_logging()
    seed_modules()

#!/usr/bin/env python3
"""Drop and recreate the experiment tables. Destroys all stored sweeps."""

import os
import sys

from sqlalchemy import create_engine, text


def migrate_database():
    """Drop experiment tables and recreate them from the current models."""
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        print("ERROR: DATABASE_URL environment variable not set")
        sys.exit(1)

    print("Connecting to database...")
    engine = create_engine(database_url, pool_pre_ping=True)

    # Children first so foreign keys never block the drop.
    print("Dropping experiment tables...")
    with engine.connect() as conn:
        for table in ("response_metrics", "responses", "experiments"):
            conn.execute(text(f"DROP TABLE IF EXISTS {table}"))
        conn.commit()

    print("Creating tables with current schema...")
    from app.adapters.postgres_store import Base

    Base.metadata.create_all(bind=engine)

    print("✓ Database migration complete!")
    print("  - experiments, responses, response_metrics recreated")


if __name__ == "__main__":
    migrate_database()

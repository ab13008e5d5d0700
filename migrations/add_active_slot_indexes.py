"""
Add slot guard indexes to appointments and payment_intents

Migration to add:
- uq_appointments_active_slot: one non-cancelled appointment per doctor/date/slot
- uq_payment_intents_pending_slot: one PENDING payment per doctor/date/slot
- payment_intents.version: row version checked on every intent update

Databases created by create_all already have all three. Existing databases must
not hold duplicates when this runs; the check below lists any that do.

Run with: python migrations/add_active_slot_indexes.py
"""

import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import inspect, text
from app.database import engine

INDEXES = {
    "uq_appointments_active_slot": (
        "appointments",
        "status != 'CANCELLED'",
    ),
    "uq_payment_intents_pending_slot": (
        "payment_intents",
        "status = 'PENDING'",
    ),
}


def find_duplicates(conn, table: str, predicate: str) -> list:
    result = conn.execute(text(f"""
        SELECT doctor_id, date, time_slot, COUNT(*)
        FROM {table}
        WHERE {predicate}
        GROUP BY doctor_id, date, time_slot
        HAVING COUNT(*) > 1
    """))
    return list(result)


def upgrade():
    """Add the intent version column and create the partial unique indexes"""
    with engine.connect() as conn:
        existing_columns = {column["name"] for column in inspect(conn).get_columns("payment_intents")}
        if "version" not in existing_columns:
            conn.execute(text("""
                ALTER TABLE payment_intents
                ADD COLUMN version INTEGER NOT NULL DEFAULT 1
            """))
            print("✅ Added payment_intents.version column")
        else:
            print("ℹ️  payment_intents.version column already exists")

        for name, (table, predicate) in INDEXES.items():
            duplicates = find_duplicates(conn, table, predicate)
            if duplicates:
                print(f"❌ {table} has double-booked slots; resolve them before adding {name}:")
                for doctor_id, day, time_slot, count in duplicates:
                    print(f"   doctor {doctor_id} {day} {time_slot}: {count} rows")
                raise SystemExit(1)

            conn.execute(text(f"""
                CREATE UNIQUE INDEX IF NOT EXISTS {name}
                ON {table} (doctor_id, date, time_slot)
                WHERE {predicate}
            """))
            print(f"✅ Ensured {name}")

        conn.commit()
        print("\n✅ Migration completed successfully!")


def downgrade():
    """Drop the partial unique indexes"""
    with engine.connect() as conn:
        for name in INDEXES:
            conn.execute(text(f"DROP INDEX IF EXISTS {name}"))
            print(f"✅ Dropped {name}")
        conn.execute(text("ALTER TABLE payment_intents DROP COLUMN IF EXISTS version"))
        print("✅ Dropped payment_intents.version column")
        conn.commit()


if __name__ == "__main__":
    import argparse
    parser = argparse.ArgumentParser(description='Manage slot guard index migration')
    parser.add_argument('--down', action='store_true', help='Rollback the migration')
    args = parser.parse_args()

    if args.down:
        print("Rolling back migration...")
        downgrade()
    else:
        print("Running migration...")
        upgrade()

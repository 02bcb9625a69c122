#!/usr/bin/env python3
"""Apply SQL migrations to the TraceLayer database.

Usage:
    python3 run_migration.py                      # every file in migrations/, in order
    python3 run_migration.py migrations/0001_extraction_core.sql
"""
import os
import sys
from pathlib import Path

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


def _migration_files(args: list[str]) -> list[Path]:
    if args:
        return [Path(a) for a in args]
    return sorted(MIGRATIONS_DIR.glob("*.sql"))


def main() -> None:
    files = _migration_files(sys.argv[1:])
    if not files:
        print(f"❌ No migration files found in {MIGRATIONS_DIR}")
        sys.exit(1)

    try:
        import psycopg2
    except ImportError:
        print("❌ psycopg2 not installed. Install with: pip install -e '.[migrate]'")
        print("\nOr run these files manually in the Supabase SQL editor:")
        for path in files:
            print(f"  - {path}")
        sys.exit(1)

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        print("❌ DATABASE_URL environment variable not set")
        sys.exit(1)

    print("🔌 Connecting to database...")
    conn = psycopg2.connect(database_url)

    try:
        with conn, conn.cursor() as cursor:
            for path in files:
                sql = path.read_text()
                print(f"🚀 Applying {path.name} ({len(sql)} bytes)")
                cursor.execute(sql)
        print(f"✅ Applied {len(files)} migration(s)")
    except Exception as e:
        print(f"❌ Error running migration: {e}")
        sys.exit(1)
    finally:
        conn.close()


if __name__ == "__main__":
    main()

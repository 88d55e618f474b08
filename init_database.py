#!/usr/bin/env python3
"""
Create the game_state table and seed the default document.
Run this once against a fresh database, or any time: it is safe to repeat.
"""

import argparse
import os
import sys

# Add the parent directory to the path so we can import the database module
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from dotenv import load_dotenv
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

import database
from app.exceptions import StateError


def table_exists(engine) -> bool:
    """Check if the game_state table already exists."""
    return database.GameState.__tablename__ in inspect(engine).get_table_names()


def main(argv=None):
    load_dotenv()
    parser = argparse.ArgumentParser(description='Initialise the RPG task system database')
    parser.add_argument('--database-url', default=os.getenv('DATABASE_URL', database.DATABASE_URL))
    parser.add_argument('--user-id', default=database.DEFAULT_USER_ID,
                        help='User id to seed with the default document')
    args = parser.parse_args(argv)

    print("=" * 60)
    print("RPG Task System: Database Initialisation")
    print("=" * 60)
    print()

    engine = database.create_db_engine(args.database_url)
    try:
        database.check_connection(engine)
        existed = table_exists(engine)
        database.init_db(engine)
        print("✓ game_state table already exists" if existed else "✓ Created game_state table")

        db = database.create_session_factory(engine)()
        try:
            created = database.ensure_default_state(db, args.user_id)
        finally:
            db.close()
        if created:
            print(f"✓ Seeded default document for user '{args.user_id}'")
        else:
            print(f"✓ Document for user '{args.user_id}' already present")
    except (SQLAlchemyError, StateError) as e:
        print(f"✗ Error: {e}")
        print("  Make sure PostgreSQL is running and DATABASE_URL is set correctly")
        return 1
    finally:
        engine.dispose()

    print()
    print("=" * 60)
    print("Initialisation Complete!")
    print("=" * 60)
    return 0


if __name__ == '__main__':
    sys.exit(main())

"""CLI script to write the default category tree into the configured store.
Usage: python scripts/seed_categories.py [--database-url URL]
"""
import sys
import argparse
import pathlib
from typing import Optional
# Ensure `backend/` is on sys.path so `termbook` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from termbook import database, services


def main(database_url: Optional[str] = None) -> int:
    """Seed default categories and print how many were created.

    Nothing is written when the store already holds categories.
    """
    store = database.create_store(database_url) if database_url else database.store
    if not database_url:
        database.create_db_and_tables()
    created = services.CategoryService(store).seed_default_categories()
    if created:
        print(f'Created {created} categories')
    else:
        print('Categories already present; nothing to do')
    return created


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Seed the default category tree')
    parser.add_argument('--database-url', default=None, help='SQLAlchemy URL; defaults to DATABASE_URL')
    args = parser.parse_args()
    main(args.database_url)

# init_db.py (in backend folder)

import sys

from sqlalchemy import inspect
from userdb.core import crypto
from userdb.infra.init_db import check_version, init_db
from userdb.infra.postgres import ENCRYPTION_KEY_PATH, check_connection, make_engine


def main():
    """Create the user database tables and an encryption key if missing"""
    engine = make_engine()
    if not check_connection(engine):
        sys.exit(1)

    print("Creating tables...")
    init_db(engine)
    print(f"Database version {check_version(engine)}")

    try:
        crypto.generate_encryption_key(ENCRYPTION_KEY_PATH)
        print(f"Encryption key written to {ENCRYPTION_KEY_PATH}")
    except FileExistsError:
        print(f"Using existing encryption key {ENCRYPTION_KEY_PATH}")

    # Print created tables
    inspector = inspect(engine)
    tables = inspector.get_table_names()
    print(f"\nTables: {tables}")

    for table in tables:
        columns = inspector.get_columns(table)
        print(f"\n{table}:")
        for col in columns:
            print(f"  - {col['name']}: {col['type']}")

if __name__ == "__main__":
    main()

# rotate_keys.py (in backend folder)

import argparse
import os
import sys

from userdb.core import crypto
from userdb.core.errors import UserDBError
from userdb.core.store import UserDB
from userdb.infra.postgres import ENCRYPTION_KEY_PATH, get_database_url
from userdb.utils.logger import setup_logger


def main(argv=None):
    """Re-encrypt every user record with a new key file"""
    parser = argparse.ArgumentParser(description="Rotate the user database encryption key")
    parser.add_argument("new_key", help="hex encoded 32 byte key file")
    parser.add_argument("--key", default=ENCRYPTION_KEY_PATH, help="current key file")
    parser.add_argument("--generate", action="store_true", help="create new_key first")
    args = parser.parse_args(argv)

    setup_logger()

    if args.generate:
        crypto.generate_encryption_key(args.new_key)
        print(f"New key written to {args.new_key}")

    db = UserDB.connect(get_database_url(), args.key)
    try:
        db.rotate_keys_from_file(args.new_key)
    except (UserDBError, crypto.CryptoError) as e:
        print(f"Key rotation failed: {e}", file=sys.stderr)
        return 1
    finally:
        db.close()

    print(f"Rotated. Point USERDB_ENCRYPTION_KEY at {os.path.abspath(args.new_key)}")
    return 0

if __name__ == "__main__":
    sys.exit(main())

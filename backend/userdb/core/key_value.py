# userdb/core/key_value.py
#
# Small metadata values in the key_value table plus the paywall address
# index allocator built on top of it. Every function here takes an open
# session and leaves commit/rollback to the caller.

import struct

from sqlalchemy.orm import Session
from userdb.models.key_value import KeyValue

# Reserved keys
KEY_VERSION = "version"
KEY_PAYWALL_ADDRESS_INDEX = "paywalladdressindex"

DATABASE_VERSION = 1

_UINT64 = struct.Struct("<Q")


def get_value(tx: Session, key: str, for_update: bool = False) -> bytes | None:
    query = tx.query(KeyValue).filter(KeyValue.key == key)
    if for_update:
        query = query.with_for_update()
    kv = query.first()
    return kv.value if kv is not None else None


def set_value(tx: Session, key: str, value: bytes):
    """Upsert, at most one row per key."""
    tx.merge(KeyValue(key=key, value=value))
    tx.flush()


# ---------- PAYWALL ADDRESS INDEX ----------

def encode_index(index: int) -> bytes:
    return _UINT64.pack(index)


def decode_index(value: bytes) -> int:
    return _UINT64.unpack(value[:8])[0]


def allocate_next_index(tx: Session) -> int:
    """
    Next unused paywall address index: 0 when nothing is stored yet,
    otherwise stored + 1.

    Nothing is persisted here. The caller must call
    set_paywall_address_index() in the same transaction so an aborted
    transaction never consumes an index.
    """
    value = get_value(tx, KEY_PAYWALL_ADDRESS_INDEX, for_update=True)
    if value is None:
        return 0
    return decode_index(value) + 1


def set_paywall_address_index(tx: Session, index: int):
    set_value(tx, KEY_PAYWALL_ADDRESS_INDEX, encode_index(index))


def get_paywall_address_index(tx: Session) -> int | None:
    value = get_value(tx, KEY_PAYWALL_ADDRESS_INDEX)
    return decode_index(value) if value is not None else None


# ---------- VERSION RECORD ----------

def insert_version_record(tx: Session, version: int = DATABASE_VERSION) -> bool:
    """Write the version record once. Returns True if it was created."""
    if get_value(tx, KEY_VERSION) is not None:
        return False
    # uint32 in an 8 byte value
    set_value(tx, KEY_VERSION, struct.pack("<I", version) + bytes(4))
    return True


def get_database_version(tx: Session) -> int | None:
    value = get_value(tx, KEY_VERSION)
    if value is None:
        return None
    return struct.unpack("<I", value[:4])[0]

"""Pytest configuration and fixtures."""

import os

import pytest

from userdb.core.store import UserDB
from userdb.core.user import Identity, User


@pytest.fixture
def key_bytes():
    """The key the test database starts with (a copy the store never zeroes)."""
    return bytearray(os.urandom(32))


@pytest.fixture
def key_file(tmp_path, key_bytes):
    path = tmp_path / "userdb.key"
    path.write_text(key_bytes.hex() + "\n")
    return str(path)


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'users.db'}"


@pytest.fixture
def userdb(db_url, key_file):
    """A bootstrapped database on a temporary SQLite file."""
    db = UserDB.connect(db_url, key_file)
    yield db
    db.close()


@pytest.fixture
def make_user():
    """Build a user aggregate; extra positional args are public keys."""

    def _make(username, *public_keys, **fields):
        identities = [Identity(key=pk, activated=1) for pk in public_keys]
        return User(
            username=username,
            email=fields.pop("email", f"{username}@example.com"),
            identities=identities,
            **fields,
        )

    return _make


@pytest.fixture
def raw_rows():
    """Read stored user rows with their blobs still sealed."""
    from userdb.models.user import User as UserRow

    def _rows(db):
        with db.read_session() as session:
            return session.query(UserRow).order_by(UserRow.id).all()

    return _rows

"""Test encryption key rotation."""

import os

import pytest

from userdb.core import crypto
from userdb.core.errors import KeyMismatchError, SameKeyError
from userdb.core.user import VERSION_USER, Identity, User, encode_user
from userdb.models.user import User as UserRow


@pytest.fixture
def new_key():
    return bytearray(os.urandom(32))


def seed(db, make_user, count=3):
    return [db.create(make_user(f"user{i}", f"pk-{i}")) for i in range(count)]


class TestRotateKeys:

    def test_records_survive_rotation(self, userdb, make_user, new_key):
        ids = seed(userdb, make_user)
        before = [userdb.get_by_id(i) for i in ids]

        userdb.rotate_keys(new_key)

        assert [userdb.get_by_id(i) for i in ids] == before

    def test_no_row_left_on_old_key(self, userdb, make_user, key_bytes, new_key, raw_rows):
        seed(userdb, make_user)

        userdb.rotate_keys(new_key)

        for row in raw_rows(userdb):
            with pytest.raises(crypto.DecryptionError):
                crypto.open_envelope(key_bytes, row.blob)
            _, version = crypto.open_envelope(new_key, row.blob)
            assert version == VERSION_USER

    def test_writes_after_rotation_use_new_key(self, userdb, make_user, new_key, raw_rows):
        userdb.rotate_keys(new_key)
        userdb.create(make_user("late"))

        (row,) = raw_rows(userdb)
        crypto.open_envelope(new_key, row.blob)

    def test_caller_key_is_not_wiped(self, userdb, new_key):
        copy = bytearray(new_key)
        userdb.rotate_keys(new_key)
        assert new_key == copy

    def test_same_key_rejected(self, userdb, make_user, key_bytes, raw_rows):
        seed(userdb, make_user, 1)
        before = [r.blob for r in raw_rows(userdb)]

        with pytest.raises(SameKeyError):
            userdb.rotate_keys(key_bytes)

        assert [r.blob for r in raw_rows(userdb)] == before
        assert userdb.get_by_username("user0").username == "user0"

    def test_invalid_key_length(self, userdb):
        with pytest.raises(crypto.InvalidKeyError):
            userdb.rotate_keys(b"too short")

    def test_key_mismatch_leaves_everything_on_old_key(
        self, userdb, make_user, key_bytes, new_key, raw_rows
    ):
        seed(userdb, make_user)
        foreign = bytearray(os.urandom(32))
        stray = User(username="stray")
        with userdb.transaction() as tx:
            tx.add(UserRow(
                id="ffffffff-ffff-ffff-ffff-ffffffffffff",
                username="stray",
                blob=crypto.seal(VERSION_USER, foreign, encode_user(stray)),
            ))
        before = {r.id: r.blob for r in raw_rows(userdb)}

        with pytest.raises(KeyMismatchError):
            userdb.rotate_keys(new_key)

        after = {r.id: r.blob for r in raw_rows(userdb)}
        assert after == before
        # Old key is still the active one
        assert userdb.get_by_username("user0").username == "user0"

    def test_rotate_twice(self, userdb, make_user, new_key):
        ids = seed(userdb, make_user, 2)

        userdb.rotate_keys(new_key)
        userdb.rotate_keys(bytearray(os.urandom(32)))

        assert [userdb.get_by_id(i).username for i in ids] == ["user0", "user1"]

    def test_rotate_from_file(self, userdb, make_user, tmp_path, new_key, raw_rows):
        seed(userdb, make_user, 1)
        path = tmp_path / "new.key"
        path.write_text(new_key.hex())

        userdb.rotate_keys_from_file(str(path))

        (row,) = raw_rows(userdb)
        crypto.open_envelope(new_key, row.blob)

    def test_rotate_from_bad_file(self, userdb, tmp_path):
        path = tmp_path / "bad.key"
        path.write_text("abcd")

        with pytest.raises(crypto.InvalidKeyError):
            userdb.rotate_keys_from_file(str(path))


class TestScenario:

    def test_create_rotate_and_resolve(self, userdb, make_user, new_key):
        u1 = make_user("u1", "pk-u1-old")
        u1.identities[0].deactivate(10)
        u1.identities.append(Identity(key="pk-u1-new", activated=10))
        u1_id = userdb.create(u1)
        u2_id = userdb.create(make_user("u2", "pk-u2"))

        assert userdb.get_by_id(u1_id).paywall_address_index == 0
        assert userdb.get_by_id(u2_id).paywall_address_index == 1

        userdb.rotate_keys(new_key)

        assert userdb.get_by_id(u1_id).username == "u1"
        assert userdb.get_by_id(u2_id).username == "u2"
        assert userdb.get_by_public_key("pk-u1-old").id == u1_id

"""
Encrypted user record store.

Each user is one row in the users table: lookup columns (id, username) in
the clear and the whole user aggregate sealed in blob. Public keys live in
the identities table so any key in a user's history resolves to the user.
"""

import logging
import uuid
from typing import Callable, Dict, Iterable, List

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from userdb.core import crypto, key_value
from userdb.core.errors import (
    ConflictError,
    CorruptError,
    KeyMismatchError,
    NotFoundError,
    SameKeyError,
)
from userdb.core.lifecycle import Lifecycle
from userdb.core.user import VERSION_USER, DecodeError, User, decode_user, encode_user
from userdb.infra.init_db import check_version, init_db
from userdb.infra.postgres import make_engine, make_session_factory, read_session, transaction
from userdb.models.user import Identity as IdentityRow
from userdb.models.user import User as UserRow
from userdb.plugins.registry import Plugin, PluginCommand, PluginCommandReply, resolve_plugin

logger = logging.getLogger(__name__)

# Rows decrypted per page by for_each()
SCAN_PAGE_SIZE = 100


# ---------- ROW CONVERSION ----------

def convert_user_to_row(user: User, blob: bytes) -> UserRow:
    return UserRow(id=str(user.id), username=user.username, blob=blob)


def convert_identities_to_rows(user: User) -> List[IdentityRow]:
    return [
        IdentityRow(
            public_key=identity.key,
            user_id=str(user.id),
            activated=identity.activated,
            deactivated=identity.deactivated,
        )
        for identity in user.identities
    ]


class UserDB:
    """
    User database backed by any SQLAlchemy engine. Safe to share between
    threads; every call opens its own session.
    """

    def __init__(self, engine, encryption_key: bytearray):
        self.engine = engine
        self._sessions = make_session_factory(engine)
        self._state = Lifecycle(encryption_key)

    @classmethod
    def connect(cls, database_url, encryption_key_path: str) -> "UserDB":
        """
        Open the database, create missing tables, verify the version record
        and load the encryption key.
        """
        engine = make_engine(database_url)
        try:
            init_db(engine)
            check_version(engine)
            key = crypto.load_encryption_key(encryption_key_path)
        except Exception:
            engine.dispose()
            raise
        return cls(engine, key)

    def transaction(self):
        return transaction(self._sessions)

    def read_session(self):
        return read_session(self._sessions)

    # ---------- ENVELOPE ----------

    def _seal_user(self, user: User) -> bytes:
        return self._state.seal(VERSION_USER, encode_user(user))

    def _open_user(self, row: UserRow) -> User:
        try:
            payload, _ = self._state.open(row.blob)
            return decode_user(payload)
        except (crypto.DecryptionError, DecodeError) as e:
            raise CorruptError(f"user {row.id}: {e}") from e

    # ---------- WRITES ----------

    def _sync_identities(self, tx, user: User):
        # Identity history only ever grows
        known = {
            pk for (pk,) in tx.query(IdentityRow.public_key)
            .filter(IdentityRow.user_id == str(user.id))
        }
        seen = set()
        for row in convert_identities_to_rows(user):
            if row.public_key in seen:
                continue
            seen.add(row.public_key)
            if row.public_key in known:
                tx.merge(row)
            else:
                tx.add(row)

    def _insert(self, user: User, allocate: bool, in_transaction=None) -> uuid.UUID:
        with self._state.running():
            with self.transaction() as tx:
                if allocate:
                    index = key_value.allocate_next_index(tx)
                    user = user.model_copy(update={
                        "id": uuid.uuid4(),
                        "paywall_address_index": index,
                    })
                # Only the user and identity rows map to ConflictError
                try:
                    tx.add(convert_user_to_row(user, self._seal_user(user)))
                    tx.flush()
                    self._sync_identities(tx, user)
                    tx.flush()
                except IntegrityError as e:
                    raise ConflictError(f"user {user.username} or id already exists") from e
                if in_transaction is not None:
                    in_transaction(tx, user)
                    tx.flush()
                if allocate:
                    key_value.set_paywall_address_index(tx, index)
        return user.id

    def create(self, user: User, in_transaction=None) -> uuid.UUID:
        """
        Create a new user. A fresh id and the next paywall address index are
        assigned inside the insert transaction.

        in_transaction(tx, user), when given, runs in that same transaction
        after the user row is written; plugins use it for their own rows.
        Its errors propagate unchanged and roll the whole create back. It
        must do its work through tx and not call back into this database:
        on SQLite a second session waits on this transaction's write lock.
        """
        logger.debug("create: %s", user.username)
        return self._insert(user, allocate=True, in_transaction=in_transaction)

    def insert_verbatim(self, user: User):
        """
        Insert a complete user record as is (id and paywall index included).
        Meant for migrations between databases.
        """
        logger.debug("insert_verbatim: %s", user.id)
        if user.id is None:
            raise ValueError("insert_verbatim requires a user id")
        self._insert(user, allocate=False)

    def update(self, user: User):
        """Replace the whole record, sealed with the current key."""
        logger.debug("update: %s", user.username)
        with self._state.running():
            try:
                with self.transaction() as tx:
                    row = tx.get(UserRow, str(user.id))
                    if row is None:
                        raise NotFoundError(f"user {user.id} not found")
                    row.username = user.username
                    row.blob = self._seal_user(user)
                    self._sync_identities(tx, user)
                    tx.flush()
            except IntegrityError as e:
                raise ConflictError(f"update user {user.id}: uniqueness violation") from e

    def set_paywall_address_index(self, index: int):
        logger.debug("set_paywall_address_index: %d", index)
        with self._state.running():
            with self.transaction() as tx:
                key_value.set_paywall_address_index(tx, index)

    # ---------- READS ----------

    def _get_one(self, build_query, what: str) -> User:
        with self._state.running():
            with self.read_session() as session:
                row = build_query(session).first()
                if row is None:
                    raise NotFoundError(f"user {what} not found")
                return self._open_user(row)

    def get_by_username(self, username: str) -> User:
        logger.debug("get_by_username: %s", username)
        return self._get_one(
            lambda s: s.query(UserRow).filter(UserRow.username == username),
            username,
        )

    def get_by_id(self, user_id) -> User:
        logger.debug("get_by_id: %s", user_id)
        return self._get_one(
            lambda s: s.query(UserRow).filter(UserRow.id == str(user_id)),
            str(user_id),
        )

    def get_by_public_key(self, public_key: str) -> User:
        """Any key in the user's identity history resolves to the user."""
        logger.debug("get_by_public_key: %s", public_key)
        return self._get_one(
            lambda s: s.query(UserRow)
            .join(IdentityRow, UserRow.id == IdentityRow.user_id)
            .filter(IdentityRow.public_key == public_key),
            public_key,
        )

    def get_many_by_public_keys(self, public_keys: Iterable[str]) -> Dict[str, User]:
        """
        Map each requested public key to its user. A user whose identity
        history holds several requested keys is decrypted once and appears
        under each of them. Unknown keys are left out.
        """
        wanted = set(public_keys)
        logger.debug("get_many_by_public_keys: %d keys", len(wanted))

        users = {}
        with self._state.running():
            if not wanted:
                return users
            with self.read_session() as session:
                matched = select(IdentityRow.user_id).where(
                    IdentityRow.public_key.in_(wanted)
                )
                rows = session.query(UserRow).filter(UserRow.id.in_(matched)).all()
                for row in rows:
                    user = self._open_user(row)
                    for pk in user.public_keys():
                        if pk in wanted:
                            users[pk] = user
        return users

    def for_each(self, callback: Callable[[User], None]):
        """
        Invoke callback on every user. Pages are read and decrypted under the
        shared lock; the callback runs outside it and may call back into the
        database. Writes made during the scan may or may not be seen.
        """
        logger.debug("for_each")
        last_id = None
        while True:
            with self._state.running():
                with self.read_session() as session:
                    query = session.query(UserRow)
                    if last_id is not None:
                        query = query.filter(UserRow.id > last_id)
                    rows = query.order_by(UserRow.id).limit(SCAN_PAGE_SIZE).all()
                    page = [self._open_user(row) for row in rows]
            if not rows:
                return
            last_id = rows[-1].id
            for user in page:
                callback(user)

    # ---------- KEY ROTATION ----------

    def rotate_keys(self, new_key):
        """
        Re-encrypt every user with new_key in one transaction, then make it
        the active key and wipe the old one. Either every row moves to the
        new key or none does.
        """
        candidate = bytearray(new_key)
        rotated = False
        try:
            with self._state.exclusive():
                crypto.check_key(candidate)
                if self._state.is_active_key(candidate):
                    raise SameKeyError("keys are the same")

                logger.info("Rotating encryption keys")
                with self.transaction() as tx:
                    rows = tx.query(UserRow).all()
                    for row in rows:
                        try:
                            payload, _ = self._state.open(row.blob)
                        except crypto.DecryptionError as e:
                            raise KeyMismatchError(f"decrypt user {row.id}: {e}") from e
                        row.blob = crypto.seal(VERSION_USER, candidate, payload)
                    tx.flush()

                self._state.swap_key(candidate)
                rotated = True
                logger.info("Rotated encryption key for %d users", len(rows))
        finally:
            if not rotated:
                crypto.zero(candidate)

    def rotate_keys_from_file(self, new_key_path: str):
        logger.debug("rotate_keys_from_file: %s", new_key_path)
        self._state.ensure_running()
        new_key = crypto.load_encryption_key(new_key_path)
        try:
            self.rotate_keys(new_key)
        finally:
            crypto.zero(new_key)

    # ---------- PLUGINS ----------

    def register_plugin(self, plugin: Plugin):
        """Run the plugin's setup and remember its settings."""
        logger.debug("register_plugin: %s %s", plugin.id, plugin.version)
        self._state.ensure_running()
        plugin_id = resolve_plugin(plugin.id)
        plugin_id.setup(self.engine)
        self._state.set_plugin_settings(plugin_id.value, plugin.settings)

    def plugin_settings(self, plugin_id: str) -> list:
        return self._state.plugin_settings(resolve_plugin(plugin_id).value)

    def plugin_exec(self, command: PluginCommand) -> PluginCommandReply:
        """Route a command to its plugin. Handler errors propagate as is."""
        logger.debug("plugin_exec: %s %s", command.id, command.command)
        self._state.ensure_running()
        plugin_id = resolve_plugin(command.id)
        payload = plugin_id.execute(self, command.command, command.payload)
        return PluginCommandReply(id=command.id, command=command.command, payload=payload)

    # ---------- LIFECYCLE ----------

    def is_shutdown(self) -> bool:
        return self._state.is_shutdown()

    def close(self):
        """
        Shut down. Waits for in-flight operations, zeroes the key and makes
        every later call fail with ShutdownError.
        """
        logger.debug("close")
        if self._state.close():
            self.engine.dispose()

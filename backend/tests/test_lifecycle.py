"""Test shutdown gating, key zeroing and the read-write lock."""

import os
import threading
import time
import uuid

import pytest

from userdb.core import crypto
from userdb.core.errors import ShutdownError
from userdb.core.lifecycle import Lifecycle, ReadWriteLock
from userdb.plugins.registry import Plugin, PluginCommand


class TestShutdown:

    def test_operations_fail_after_close(self, userdb, make_user):
        user = userdb.get_by_id(userdb.create(make_user("alice", "pk-1")))
        userdb.close()

        calls = [
            lambda: userdb.create(make_user("bob")),
            lambda: userdb.get_by_id(user.id),
            lambda: userdb.get_by_username("alice"),
            lambda: userdb.get_by_public_key("pk-1"),
            lambda: userdb.get_many_by_public_keys({"pk-1"}),
            lambda: userdb.update(user),
            lambda: userdb.insert_verbatim(make_user("carol", id=uuid.uuid4())),
            lambda: userdb.for_each(lambda u: None),
            lambda: userdb.rotate_keys(os.urandom(32)),
            lambda: userdb.rotate_keys(b"short"),
            lambda: userdb.rotate_keys_from_file("/nonexistent"),
            lambda: userdb.set_paywall_address_index(3),
            lambda: userdb.register_plugin(Plugin(id="cms")),
            lambda: userdb.plugin_exec(PluginCommand(id="cms", command="cmsuserbyid")),
        ]
        for call in calls:
            with pytest.raises(ShutdownError):
                call()

    def test_closed_store_never_touches_storage(self, userdb, make_user):
        userdb.close()

        def no_session():
            raise AssertionError("storage touched after close")

        userdb._sessions = no_session

        for call in (
            lambda: userdb.create(make_user("bob")),
            lambda: userdb.get_by_id(uuid.uuid4()),
            lambda: userdb.update(make_user("bob", id=uuid.uuid4())),
            lambda: userdb.rotate_keys(os.urandom(32)),
        ):
            with pytest.raises(ShutdownError):
                call()

    def test_close_zeroes_key_once(self, userdb):
        key = userdb._state._key

        userdb.close()
        userdb.close()

        assert key == bytearray(32)
        assert userdb.is_shutdown()

    def test_close_waits_for_in_flight_work(self):
        state = Lifecycle(bytearray(os.urandom(32)))
        closed = threading.Event()

        def close():
            state.close()
            closed.set()

        with state.running():
            t = threading.Thread(target=close)
            t.start()
            assert not closed.wait(0.2)
            # Key still usable while the shared section is held
            state.seal(1, b"payload")

        t.join(5)
        assert closed.is_set()
        assert state.is_shutdown()

    def test_rejects_short_key(self):
        with pytest.raises(crypto.InvalidKeyError):
            Lifecycle(bytearray(16))


class TestLifecycle:

    def test_close_returns_false_when_already_closed(self):
        state = Lifecycle(bytearray(os.urandom(32)))
        assert state.close() is True
        assert state.close() is False

    def test_running_raises_after_close(self):
        state = Lifecycle(bytearray(os.urandom(32)))
        state.close()

        with pytest.raises(ShutdownError):
            with state.running():
                pass
        with pytest.raises(ShutdownError):
            with state.exclusive():
                pass

    def test_swap_key_wipes_old_key(self):
        old = bytearray(os.urandom(32))
        new = bytearray(os.urandom(32))
        state = Lifecycle(old)

        with state.exclusive():
            state.swap_key(new)

        assert old == bytearray(32)
        assert state.is_active_key(new)

    def test_plugin_settings_last_write_wins(self):
        state = Lifecycle(bytearray(os.urandom(32)))
        state.set_plugin_settings("cms", ["a"])
        state.set_plugin_settings("cms", ["b"])
        assert state.plugin_settings("cms") == ["b"]
        assert state.plugin_settings("other") == []


class TestReadWriteLock:

    def test_readers_share(self):
        lock = ReadWriteLock()
        inside = threading.Barrier(2, timeout=5)

        def reader():
            with lock.read_lock():
                inside.wait()

        threads = [threading.Thread(target=reader) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)
        assert not inside.broken

    def test_writer_excludes_readers(self):
        lock = ReadWriteLock()
        order = []
        writer_in = threading.Event()

        def writer():
            with lock.write_lock():
                writer_in.set()
                time.sleep(0.1)
                order.append("writer")

        def reader():
            writer_in.wait(5)
            with lock.read_lock():
                order.append("reader")

        w = threading.Thread(target=writer)
        r = threading.Thread(target=reader)
        w.start()
        r.start()
        w.join(5)
        r.join(5)

        assert order == ["writer", "reader"]

    def test_nested_read_does_not_queue_behind_waiting_writer(self):
        lock = ReadWriteLock()
        nested = threading.Event()

        def write():
            with lock.write_lock():
                pass

        writer = threading.Thread(target=write, daemon=True)

        def reader():
            with lock.read_lock():
                writer.start()
                while lock._writers_waiting == 0:
                    time.sleep(0.01)
                with lock.read_lock():
                    nested.set()

        r = threading.Thread(target=reader, daemon=True)
        r.start()

        assert nested.wait(5)
        r.join(5)
        writer.join(5)
        assert not writer.is_alive()

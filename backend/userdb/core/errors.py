# userdb/core/errors.py


class UserDBError(Exception):
    """Base exception for user database errors."""

    pass


class ShutdownError(UserDBError):
    """Operation attempted after the database was closed."""

    pass


class NotFoundError(UserDBError):
    """No matching user record."""

    pass


class ConflictError(UserDBError):
    """Uniqueness violation on insert (username, id or public key)."""

    pass


class CorruptError(UserDBError):
    """Stored envelope failed to open or decode with the active key."""

    pass


class KeyMismatchError(UserDBError):
    """Existing data does not decrypt with the key declared as active."""

    pass


class SameKeyError(UserDBError):
    """Rotation requested to the key that is already active."""

    pass


class InvalidPluginError(UserDBError):
    """Unknown plugin id."""

    pass


class InvalidPluginCommandError(UserDBError):
    """Plugin does not implement the requested command, or the payload is invalid."""

    pass


class VersionMismatchError(UserDBError):
    """Database version record does not match the compiled-in version."""

    def __init__(self, got: int, want: int):
        super().__init__(f"version mismatch: got {got}, want {want}")
        self.got = got
        self.want = want

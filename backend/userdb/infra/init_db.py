# userdb/infra/init_db.py

import logging

from userdb.core import key_value
from userdb.core.errors import VersionMismatchError
from userdb.infra.postgres import make_session_factory, read_session, transaction
from userdb.models.base import Base
from userdb.models.key_value import KeyValue
from userdb.models.user import User, Identity

logger = logging.getLogger(__name__)

# Plugin tables share the metadata but are created by the plugin's setup
CORE_TABLES = [KeyValue.__table__, User.__table__, Identity.__table__]


def init_db(engine):
    """Create the core tables if absent and write the version record"""
    Base.metadata.create_all(bind=engine, tables=CORE_TABLES)
    with transaction(make_session_factory(engine)) as tx:
        if key_value.insert_version_record(tx):
            logger.info("Created user database version %d", key_value.DATABASE_VERSION)


def check_version(engine):
    """No migrations exist yet, a different version is fatal"""
    with read_session(make_session_factory(engine)) as session:
        version = key_value.get_database_version(session)
    if version != key_value.DATABASE_VERSION:
        raise VersionMismatchError(version, key_value.DATABASE_VERSION)
    return version

# userdb/models/user.py

from sqlalchemy import Column, String, LargeBinary, BigInteger, ForeignKey
from userdb.models.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    username = Column(String(255), unique=True, nullable=False, index=True)

    # Sealed envelope of the full user aggregate, never plaintext
    blob = Column(LargeBinary, nullable=False)


class Identity(Base):
    __tablename__ = "identities"

    # A public key resolves to exactly one user across the whole history
    public_key = Column(String(128), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    activated = Column(BigInteger, nullable=False, default=0)
    deactivated = Column(BigInteger, nullable=False, default=0)

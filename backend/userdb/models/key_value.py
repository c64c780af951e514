# userdb/models/key_value.py

from sqlalchemy import Column, String, LargeBinary
from userdb.models.base import Base


class KeyValue(Base):
    __tablename__ = "key_value"

    key = Column(String(64), primary_key=True)
    value = Column(LargeBinary, nullable=False)

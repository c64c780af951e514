# userdb/models/cms_user.py
#
# Owned by the cms plugin. The table is created when the plugin registers,
# not at bootstrap.

from sqlalchemy import Column, String, Integer, ForeignKey
from userdb.models.base import Base


class CMSUser(Base):
    __tablename__ = "cms_users"

    id = Column(String(36), ForeignKey("users.id"), primary_key=True)
    domain = Column(Integer, nullable=False, default=0, index=True)
    github_name = Column(String(255), nullable=False, default="")
    matrix_name = Column(String(255), nullable=False, default="")
    contractor_type = Column(Integer, nullable=False, default=0, index=True)
    contractor_name = Column(String(255), nullable=False, default="")
    contractor_location = Column(String(255), nullable=False, default="")
    contractor_contact = Column(String(255), nullable=False, default="")
    supervisor_user_id = Column(String(36), nullable=False, default="")

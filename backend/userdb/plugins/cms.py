# userdb/plugins/cms.py
#
# Contractor management user data. Lives in its own cms_users table,
# unencrypted, keyed by the user id.

import logging
from typing import List, Optional

from pydantic import BaseModel, ValidationError

from userdb.core.errors import InvalidPluginCommandError, NotFoundError
from userdb.core.user import Identity, User
from userdb.models.cms_user import CMSUser as CMSUserRow

logger = logging.getLogger(__name__)

PLUGIN_ID = "cms"
VERSION = "1"

CMD_NEW_CMS_USER = "newcmsuser"
CMD_UPDATE_CMS_USER = "updatecmsuser"
CMD_CMS_USER_BY_ID = "cmsuserbyid"
CMD_CMS_USERS_BY_DOMAIN = "cmsusersbydomain"
CMD_CMS_USERS_BY_CONTRACTOR_TYPE = "cmsusersbycontractortype"


# ---------- PAYLOADS ----------

class NewCMSUser(BaseModel):
    email: str
    username: str
    hashed_password: str = ""
    public_key: Optional[str] = None
    verification_token: Optional[str] = None
    verification_expiry: int = 0
    contractor_type: int = 0


class NewCMSUserReply(BaseModel):
    id: str
    paywall_address_index: int


class UpdateCMSUser(BaseModel):
    id: str
    domain: int = 0
    github_name: str = ""
    matrix_name: str = ""
    contractor_type: int = 0
    contractor_name: str = ""
    contractor_location: str = ""
    contractor_contact: str = ""
    supervisor_user_id: str = ""


class CMSUserByID(BaseModel):
    id: str


class CMSUsersByDomain(BaseModel):
    domain: int


class CMSUsersByContractorType(BaseModel):
    contractor_type: int


class CMSUser(BaseModel):
    id: str
    username: str
    email: str
    domain: int
    github_name: str
    matrix_name: str
    contractor_type: int
    contractor_name: str
    contractor_location: str
    contractor_contact: str
    supervisor_user_id: str


class CMSUserReply(BaseModel):
    user: CMSUser


class CMSUsersReply(BaseModel):
    users: List[CMSUser]


class EmptyReply(BaseModel):
    pass


# ---------- SETUP ----------

def setup(engine):
    CMSUserRow.__table__.create(bind=engine, checkfirst=True)


# ---------- COMMANDS ----------

def _decode(model, payload: str):
    try:
        return model.model_validate_json(payload)
    except ValidationError as e:
        raise InvalidPluginCommandError(
            f"invalid {model.__name__} payload: {e.error_count()} validation errors"
        ) from None


def _to_cms_user(user: User, row: CMSUserRow) -> CMSUser:
    return CMSUser(
        id=str(user.id),
        username=user.username,
        email=user.email,
        domain=row.domain,
        github_name=row.github_name,
        matrix_name=row.matrix_name,
        contractor_type=row.contractor_type,
        contractor_name=row.contractor_name,
        contractor_location=row.contractor_location,
        contractor_contact=row.contractor_contact,
        supervisor_user_id=row.supervisor_user_id,
    )


def new_cms_user(db, payload: str) -> str:
    """User record and cms row are written in the same transaction."""
    req = _decode(NewCMSUser, payload)
    user = User(
        email=req.email,
        username=req.username,
        hashed_password=req.hashed_password,
        email_verification_token=req.verification_token,
        email_verification_expiry=req.verification_expiry,
        identities=[Identity(key=req.public_key)] if req.public_key else [],
    )

    def insert_cms_row(tx, created: User):
        tx.add(CMSUserRow(id=str(created.id), contractor_type=req.contractor_type))

    user_id = db.create(user, in_transaction=insert_cms_row)
    created = db.get_by_id(user_id)
    return NewCMSUserReply(
        id=str(user_id),
        paywall_address_index=created.paywall_address_index,
    ).model_dump_json()


def update_cms_user(db, payload: str) -> str:
    req = _decode(UpdateCMSUser, payload)
    # The user record must exist
    db.get_by_id(req.id)
    with db.transaction() as tx:
        row = tx.get(CMSUserRow, req.id)
        if row is None:
            row = CMSUserRow(id=req.id)
            tx.add(row)
        for field, value in req.model_dump(exclude={"id"}).items():
            setattr(row, field, value)
    return EmptyReply().model_dump_json()


def cms_user_by_id(db, payload: str) -> str:
    req = _decode(CMSUserByID, payload)
    user = db.get_by_id(req.id)
    with db.read_session() as session:
        row = session.get(CMSUserRow, req.id)
    if row is None:
        raise NotFoundError(f"cms user {req.id} not found")
    return CMSUserReply(user=_to_cms_user(user, row)).model_dump_json()


def _cms_users_where(db, condition) -> str:
    with db.read_session() as session:
        rows = session.query(CMSUserRow).filter(condition).order_by(CMSUserRow.id).all()
    users = [_to_cms_user(db.get_by_id(row.id), row) for row in rows]
    return CMSUsersReply(users=users).model_dump_json()


def cms_users_by_domain(db, payload: str) -> str:
    req = _decode(CMSUsersByDomain, payload)
    return _cms_users_where(db, CMSUserRow.domain == req.domain)


def cms_users_by_contractor_type(db, payload: str) -> str:
    req = _decode(CMSUsersByContractorType, payload)
    return _cms_users_where(db, CMSUserRow.contractor_type == req.contractor_type)


COMMANDS = {
    CMD_NEW_CMS_USER: new_cms_user,
    CMD_UPDATE_CMS_USER: update_cms_user,
    CMD_CMS_USER_BY_ID: cms_user_by_id,
    CMD_CMS_USERS_BY_DOMAIN: cms_users_by_domain,
    CMD_CMS_USERS_BY_CONTRACTOR_TYPE: cms_users_by_contractor_type,
}


def execute(db, command: str, payload: str) -> str:
    handler = COMMANDS.get(command)
    if handler is None:
        raise InvalidPluginCommandError(f"invalid {PLUGIN_ID} plugin command: {command}")
    logger.debug("cms %s", command)
    return handler(db, payload)

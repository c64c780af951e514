# userdb/api/users.py

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from userdb.core.circuit_breaker import limiter, PUBLIC_KEY_LIMIT
from userdb.core.errors import (
    ConflictError,
    CorruptError,
    InvalidPluginCommandError,
    InvalidPluginError,
    NotFoundError,
    ShutdownError,
)
from userdb.core.store import UserDB
from userdb.core.user import Identity, User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users")


def get_userdb(request: Request) -> UserDB:
    """
    FastAPI dependency returning the database opened at startup.
    """
    return request.app.state.userdb


def http_error(e: Exception) -> HTTPException:
    """Map store errors onto status codes"""
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ConflictError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ShutdownError):
        return HTTPException(status_code=503, detail="user database is shut down")
    if isinstance(e, (InvalidPluginError, InvalidPluginCommandError)):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, CorruptError):
        # Details stay in the server log
        logger.error("Corrupt user record: %s", e)
        return HTTPException(status_code=500, detail="corrupt user record")
    return HTTPException(status_code=500, detail="internal error")


class NewUserSchema(BaseModel):
    username: str
    email: str = ""
    hashed_password: str = ""
    public_key: Optional[str] = None


class PublicKeysSchema(BaseModel):
    public_keys: List[str]


class UserView(BaseModel):
    """What leaves the service. No credential material."""

    id: UUID
    username: str
    email: str
    admin: bool
    deactivated: bool
    paywall_address_index: int
    identities: List[Identity]

    @classmethod
    def from_user(cls, user: User) -> "UserView":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            admin=user.admin,
            deactivated=user.deactivated,
            paywall_address_index=user.paywall_address_index,
            identities=user.identities,
        )


@router.post("", status_code=201)
def create_user_endpoint(payload: NewUserSchema, db: UserDB = Depends(get_userdb)):
    user = User(
        username=payload.username,
        email=payload.email,
        hashed_password=payload.hashed_password,
        identities=[Identity(key=payload.public_key)] if payload.public_key else [],
    )
    try:
        user_id = db.create(user)
    except (ConflictError, ShutdownError) as e:
        raise http_error(e)

    logger.info("User %s registered", payload.username)
    return {"status": "created", "user_id": str(user_id)}


@router.get("/by-username/{username}")
def get_user_by_username(username: str, db: UserDB = Depends(get_userdb)):
    try:
        return UserView.from_user(db.get_by_username(username))
    except (NotFoundError, ShutdownError, CorruptError) as e:
        raise http_error(e)


@router.get("/by-public-key/{public_key}")
@limiter.limit(PUBLIC_KEY_LIMIT)
def get_user_by_public_key(request: Request, public_key: str, db: UserDB = Depends(get_userdb)):
    try:
        return UserView.from_user(db.get_by_public_key(public_key))
    except (NotFoundError, ShutdownError, CorruptError) as e:
        raise http_error(e)


@router.post("/by-public-keys")
def get_users_by_public_keys(payload: PublicKeysSchema, db: UserDB = Depends(get_userdb)):
    try:
        users = db.get_many_by_public_keys(payload.public_keys)
    except (ShutdownError, CorruptError) as e:
        raise http_error(e)
    return {pk: UserView.from_user(u) for pk, u in users.items()}


@router.get("/{user_id}")
def get_user(user_id: UUID, db: UserDB = Depends(get_userdb)):
    try:
        return UserView.from_user(db.get_by_id(user_id))
    except (NotFoundError, ShutdownError, CorruptError) as e:
        raise http_error(e)

# userdb/core/user.py

import time
import uuid
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

# Envelope version of a sealed user blob
VERSION_USER = 1


class Identity(BaseModel):
    """One public key in a user's identity history."""

    key: str
    activated: int = 0
    deactivated: int = 0

    def is_active(self) -> bool:
        return self.activated != 0 and self.deactivated == 0

    def deactivate(self, when: Optional[int] = None):
        self.deactivated = when if when is not None else int(time.time())


class User(BaseModel):
    """
    Full user aggregate. Everything here ends up inside the encrypted blob;
    only id, username and identity keys are mirrored into lookup columns.
    """

    id: Optional[uuid.UUID] = None
    email: str = ""
    username: str
    hashed_password: str = ""
    admin: bool = False

    email_verification_token: Optional[str] = None
    email_verification_expiry: int = 0

    new_user_paywall_address: str = ""
    new_user_paywall_amount: int = 0
    new_user_paywall_tx: str = ""
    new_user_paywall_poll_expiry: int = 0
    paywall_address_index: int = 0

    failed_login_attempts: int = 0
    deactivated: bool = False
    last_login_time: int = 0
    email_notifications: int = 0

    identities: List[Identity] = Field(default_factory=list)

    # Plugin specific sub-state keyed by plugin id
    plugin_data: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    def public_keys(self) -> List[str]:
        return [i.key for i in self.identities]

    def active_identity(self) -> Optional[Identity]:
        for identity in self.identities:
            if identity.is_active():
                return identity
        return None


class DecodeError(ValueError):
    pass


def encode_user(user: User) -> bytes:
    return user.model_dump_json().encode("utf-8")


def decode_user(payload: bytes) -> User:
    try:
        return User.model_validate_json(payload)
    except ValidationError as e:
        # Never echo the plaintext back in the message
        raise DecodeError(f"decode user: {e.error_count()} validation errors") from None

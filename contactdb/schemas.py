from enum import Enum

from pydantic import BaseModel, StrictStr, field_validator


class Role(str, Enum):
    """Role of a database user."""

    OWNER = "OWNER"
    REGULAR = "REGULAR"


class UserOut(BaseModel):
    """A user as reported to callers."""

    username: str
    role: Role = Role.REGULAR

    @field_validator("username")
    @classmethod
    def uppercase(cls, value: str) -> str:
        return value.upper()


class ConnectionParams(BaseModel):
    """Parameters of :meth:`SessionManager.connect`; none has a default."""

    database: StrictStr
    boot_password: StrictStr
    username: StrictStr
    password: StrictStr


class SecureRecord(BaseModel):
    """Salt and hash stored in a user's ``SECURE`` table."""

    salt: str
    hash: str

    class Config:
        frozen = True

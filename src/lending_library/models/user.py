"""
User model for the Lending Library.

Users are the people who borrow books (Members) and the staff who run the
catalogue (Admins). Credentials live with the authentication service; the
library only needs identity, role and whether the account is active.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class Role(str, Enum):
    """Account roles."""

    ADMIN = "Admin"
    MEMBER = "Member"


class User(BaseModel):
    """Represents a library account."""

    id: str = Field(
        ...,
        description="Unique identifier for the user",
        pattern=r"^user_[a-f0-9]{12}$",
        examples=["user_8b1e0f3c9a27"],
    )

    name: str = Field(
        ...,
        description="Full name",
        min_length=2,
        max_length=100,
        examples=["Jane Doe"],
    )

    email: EmailStr = Field(
        ...,
        description="Login and notification address",
        examples=["jane.doe@example.com"],
    )

    role: Role = Field(default=Role.MEMBER)

    is_active: bool = Field(
        default=True,
        description="Deactivated accounts cannot borrow or act on loans",
    )

    last_login: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": "user_8b1e0f3c9a27",
                "name": "Jane Doe",
                "email": "jane.doe@example.com",
                "role": "Member",
                "is_active": True,
            }
        },
    )


class Actor(BaseModel):
    """The verified identity performing a request.

    Built by the boundary from whatever authentication produced; the core
    trusts it and only applies ownership and role rules.
    """

    user_id: str
    role: Role = Role.MEMBER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    model_config = ConfigDict(frozen=True)

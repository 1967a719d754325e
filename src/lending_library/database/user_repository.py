"""
User repository implementation for the Lending Library.

Accounts are created by self-registration (always as Members) or by an
admin (any role). Only admins may change roles or account status, and an
account is never removed; deactivation is a soft delete that keeps the
user's loan history intact.

``get_actor`` is how the request boundary turns an already-authenticated
user id into the ``Actor`` every circulation call takes.
"""

import enum
import logging
from datetime import datetime

from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError

from ..database.schema import RoleEnum
from ..database.schema import User as UserDB
from ..database.session import safe_commit, safe_query
from ..errors import FailureReason, ForbiddenError, InvalidStateError
from ..models.user import Actor, Role
from ..models.user import User as UserModel
from .repository import (
    BaseRepository,
    DuplicateError,
    NotFoundError,
    PaginatedResponse,
    PaginationParams,
    new_id,
)

logger = logging.getLogger(__name__)


class UserCreateSchema(BaseModel):
    """Schema for creating an account."""

    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    role: Role = Role.MEMBER


class UserUpdateSchema(BaseModel):
    """Schema for updating an account - all fields optional."""

    name: str | None = Field(None, min_length=2, max_length=100)
    email: EmailStr | None = None
    role: Role | None = None
    is_active: bool | None = None


class UserSearchParams(BaseModel):
    """Search parameters for finding accounts."""

    query: str | None = None  # name or email contains
    role: Role | None = None
    is_active: bool | None = None


class UserSortOptions(str, enum.Enum):
    """Sorting options for user queries."""

    NAME = "name"
    EMAIL = "email"
    CREATED_AT = "created_at"


class UserRepository(BaseRepository[UserDB, UserModel]):
    """Repository for account data access."""

    @property
    def model_class(self):
        return UserDB

    @property
    def response_schema(self):
        return UserModel

    def _to_response_model(self, db_obj: UserDB) -> UserModel:
        return UserModel(
            id=db_obj.id,
            name=db_obj.name,
            email=db_obj.email,
            role=Role(db_obj.role.value),
            is_active=db_obj.is_active,
            last_login=db_obj.last_login,
            created_at=db_obj.created_at,
            updated_at=db_obj.updated_at,
        )

    def _require_row(self, user_id: str) -> UserDB:
        user = self._get_row(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found", FailureReason.USER_NOT_FOUND)
        return user

    def _email_taken(self, email: str, exclude_id: str | None = None) -> bool:
        query = (
            select(func.count())
            .select_from(UserDB)
            .where(func.lower(UserDB.email) == email.lower())
        )
        if exclude_id is not None:
            query = query.where(UserDB.id != exclude_id)
        count = safe_query(
            self.session, lambda s: s.execute(query).scalar(), "Failed to check email"
        )
        return bool(count)

    def create(self, data: UserCreateSchema, actor: Actor | None = None) -> UserModel:
        """
        Create an account.

        Args:
            data: Account details
            actor: The admin creating the account, or None for self-registration

        Raises:
            ForbiddenError: If a non-admin asks for the Admin role
            DuplicateError: If the email is already registered
        """
        if data.role == Role.ADMIN and (actor is None or not actor.is_admin):
            raise ForbiddenError("Only admins can create admin accounts")

        email = str(data.email).lower()
        if self._email_taken(email):
            raise DuplicateError(
                "User already exists with this email", FailureReason.DUPLICATE_EMAIL
            )

        now = datetime.now()
        user = UserDB(
            id=new_id("user"),
            name=data.name,
            email=email,
            role=RoleEnum(data.role.value),
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        self.session.add(user)

        try:
            safe_commit(self.session, "create user")
        except IntegrityError as e:
            raise DuplicateError(
                "User already exists with this email", FailureReason.DUPLICATE_EMAIL
            ) from e

        logger.info("Created %s account %s", data.role.value, user.id)
        return self._to_response_model(user)

    def get_by_email(self, email: str) -> UserModel | None:
        query = select(UserDB).where(func.lower(UserDB.email) == email.lower())
        result = safe_query(
            self.session,
            lambda s: s.execute(query).scalar_one_or_none(),
            "Failed to get user by email",
        )
        if result is None:
            return None
        return self._to_response_model(result)

    def get_actor(self, user_id: str) -> Actor:
        """
        Resolve a verified user id into the acting identity.

        Raises:
            NotFoundError: If the account does not exist
            ForbiddenError: If the account is deactivated
        """
        user = self._require_row(user_id)
        if not user.is_active:
            raise ForbiddenError("User account is inactive", FailureReason.USER_INACTIVE)
        return Actor(user_id=user.id, role=Role(user.role.value))

    def search(
        self,
        search_params: UserSearchParams,
        pagination: PaginationParams | None = None,
        sort_by: UserSortOptions = UserSortOptions.CREATED_AT,
        sort_desc: bool = True,
    ) -> PaginatedResponse[UserModel]:
        """Search accounts by role, status and free text over name and email."""
        query = select(UserDB)
        filters = []

        if search_params.query:
            search_term = f"%{search_params.query}%"
            filters.append(or_(UserDB.name.ilike(search_term), UserDB.email.ilike(search_term)))

        if search_params.role is not None:
            filters.append(UserDB.role == RoleEnum(search_params.role.value))

        if search_params.is_active is not None:
            filters.append(UserDB.is_active.is_(search_params.is_active))

        if filters:
            query = query.where(and_(*filters))

        sort_field = {
            UserSortOptions.NAME: UserDB.name,
            UserSortOptions.EMAIL: UserDB.email,
            UserSortOptions.CREATED_AT: UserDB.created_at,
        }.get(sort_by, UserDB.created_at)
        query = query.order_by(sort_field.desc() if sort_desc else sort_field.asc(), UserDB.id)

        return self._paginate(query, pagination or PaginationParams())

    def update(self, actor: Actor, user_id: str, data: UserUpdateSchema) -> UserModel:
        """
        Update an account.

        Users may change their own name and email; role and status changes
        are reserved for admins.

        Raises:
            ForbiddenError: If the actor may not make this change
            NotFoundError: If the account does not exist
            DuplicateError: If the new email is already registered
        """
        if actor.user_id != user_id and not actor.is_admin:
            raise ForbiddenError("Access denied")

        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        if not actor.is_admin and ("role" in changes or "is_active" in changes):
            raise ForbiddenError("Only admins can change role or account status")

        if actor.user_id == user_id and changes.get("is_active") is False:
            raise InvalidStateError(
                "You cannot deactivate your own account", FailureReason.SELF_DEACTIVATION
            )

        user = self._require_row(user_id)

        if "email" in changes:
            changes["email"] = str(changes["email"]).lower()
            if self._email_taken(changes["email"], exclude_id=user_id):
                raise DuplicateError("Email already in use", FailureReason.DUPLICATE_EMAIL)

        if "role" in changes:
            changes["role"] = RoleEnum(changes["role"].value)

        for field, value in changes.items():
            setattr(user, field, value)
        user.updated_at = datetime.now()

        try:
            safe_commit(self.session, "update user")
        except IntegrityError as e:
            raise DuplicateError("Email already in use", FailureReason.DUPLICATE_EMAIL) from e

        logger.info("Updated user %s (fields: %s)", user_id, ", ".join(sorted(changes)))
        return self._to_response_model(user)

    def deactivate(self, actor: Actor, user_id: str) -> UserModel:
        """
        Deactivate an account (soft delete). Admin only.

        Raises:
            ForbiddenError: If the actor is not an admin
            InvalidStateError: If an admin targets their own account
            NotFoundError: If the account does not exist
        """
        if not actor.is_admin:
            raise ForbiddenError("Only admins can deactivate accounts")
        if actor.user_id == user_id:
            raise InvalidStateError(
                "You cannot deactivate your own account", FailureReason.SELF_DEACTIVATION
            )

        user = self._require_row(user_id)
        user.is_active = False
        user.updated_at = datetime.now()
        safe_commit(self.session, "deactivate user")

        logger.info("Deactivated user %s", user_id)
        return self._to_response_model(user)

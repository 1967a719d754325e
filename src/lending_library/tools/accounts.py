"""
Account tools for the Lending Library MCP Server.

1. register_user: Self-registration as a Member, or any role when an admin
   creates the account
2. update_user: Users edit their own name and email; admins edit anyone
   and may change role and status
3. deactivate_user: Soft-delete an account (admin, never their own)

Passwords and tokens are handled by the authentication layer in front of
this server; these tools only manage the account records.
"""

import logging
from collections.abc import Callable
from typing import Annotated, Any

from pydantic import Field, ValidationError

from ..database.session import get_session, run_blocking
from ..database.user_repository import UserCreateSchema, UserRepository, UserUpdateSchema
from ..errors import LibraryError, RepositoryException
from ..models.user import Role, User
from .common import (
    USER_ID_PATTERN,
    ActorId,
    ActorInput,
    UserId,
    error_response,
    invalid_input_response,
    provided,
    repository_error_response,
    success_response,
    tool_result,
    unexpected_error_response,
)

logger = logging.getLogger(__name__)

OptionalActorId = Annotated[
    str | None,
    Field(
        description="Admin creating the account; omit for self-registration",
        pattern=USER_ID_PATTERN,
    ),
]


async def _run_account_change(tool: str, unit: Callable[[], User]) -> User | dict[str, Any]:
    """Run one account change, returning the user or the error result."""
    try:
        return await run_blocking(unit)
    except LibraryError as e:
        return error_response(tool, e)
    except RepositoryException as e:
        return repository_error_response(tool, e)
    except Exception as e:
        return unexpected_error_response(tool, e)


class RegisterUserInput(UserCreateSchema):
    """
    Input schema for the register_user tool.

    Without ``actor_id`` this is a self-registration and only the Member
    role is allowed.
    """

    actor_id: OptionalActorId = None


async def register_user_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the register_user tool."""
    try:
        params = RegisterUserInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_input_response("register_user", e)

    def register() -> User:
        with get_session() as session:
            repo = UserRepository(session)
            actor = repo.get_actor(params.actor_id) if params.actor_id else None
            return repo.create(
                UserCreateSchema(name=params.name, email=params.email, role=params.role),
                actor=actor,
            )

    user = await _run_account_change("register_user", register)
    if isinstance(user, dict):
        return user

    message = f"Registered {user.role.value} account {user.id} for {user.email}"
    return success_response(message, user=user.model_dump(mode="json"))


async def register_user_tool(
    name: str,
    email: str,
    role: Role | None = None,
    actor_id: OptionalActorId = None,
) -> dict[str, Any]:
    result = await register_user_handler(
        provided(name=name, email=email, role=role, actor_id=actor_id)
    )
    return tool_result(result)


class UpdateUserInput(ActorInput, UserUpdateSchema):
    """Input schema for the update_user tool. Only supplied fields change."""

    user_id: UserId


async def update_user_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the update_user tool."""
    try:
        params = UpdateUserInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_input_response("update_user", e)

    changes = params.model_dump(exclude_unset=True, exclude={"actor_id", "user_id"})
    logger.debug("update_user: actor=%s user=%s", params.actor_id, params.user_id)

    def update() -> User:
        with get_session() as session:
            repo = UserRepository(session)
            actor = repo.get_actor(params.actor_id)
            return repo.update(actor, params.user_id, UserUpdateSchema.model_validate(changes))

    user = await _run_account_change("update_user", update)
    if isinstance(user, dict):
        return user

    fields = ", ".join(sorted(changes)) or "nothing"
    return success_response(
        f"Updated account {user.id} ({fields})", user=user.model_dump(mode="json")
    )


async def update_user_tool(
    actor_id: ActorId,
    user_id: UserId,
    name: str | None = None,
    email: str | None = None,
    role: Role | None = None,
    is_active: bool | None = None,
) -> dict[str, Any]:
    result = await update_user_handler(
        provided(
            actor_id=actor_id,
            user_id=user_id,
            name=name,
            email=email,
            role=role,
            is_active=is_active,
        )
    )
    return tool_result(result)


class DeactivateUserInput(ActorInput):
    """Input schema for the deactivate_user tool. Admin only."""

    user_id: UserId


async def deactivate_user_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the deactivate_user tool."""
    try:
        params = DeactivateUserInput.model_validate(arguments)
    except ValidationError as e:
        return invalid_input_response("deactivate_user", e)

    logger.debug("deactivate_user: actor=%s user=%s", params.actor_id, params.user_id)

    def deactivate() -> User:
        with get_session() as session:
            repo = UserRepository(session)
            actor = repo.get_actor(params.actor_id)
            return repo.deactivate(actor, params.user_id)

    user = await _run_account_change("deactivate_user", deactivate)
    if isinstance(user, dict):
        return user

    return success_response(
        f"Deactivated account {user.id}; loan history is kept",
        user=user.model_dump(mode="json"),
    )


async def deactivate_user_tool(actor_id: ActorId, user_id: UserId) -> dict[str, Any]:
    return tool_result(await deactivate_user_handler({"actor_id": actor_id, "user_id": user_id}))


register_user = {
    "name": "register_user",
    "description": (
        "Create a library account. Self-registration creates a Member; an admin "
        "passing their actor_id may create accounts with any role. Emails are unique."
    ),
    "handler": register_user_tool,
}

update_user = {
    "name": "update_user",
    "description": (
        "Update an account. Users may change their own name and email; admins may "
        "update any account, including role and active status."
    ),
    "handler": update_user_tool,
}

deactivate_user = {
    "name": "deactivate_user",
    "description": (
        "Deactivate an account so it can no longer borrow. The account and its "
        "loan history are kept. Admin only; admins cannot deactivate themselves."
    ),
    "handler": deactivate_user_tool,
}

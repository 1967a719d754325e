"""User Resources - Account Directory

Read-only views over library accounts.

Resources:
- library://users/list - First page of accounts, newest first
- library://users/list/{page} - Any page of accounts
- library://users/by-role/{role} - Accounts with one role (admin or member)
- library://users/search/{query} - Accounts whose name or email contains the text
- library://users/{user_id} - One account with its open loan count

These views include email addresses. Like the per-user loan views, who may
read them is decided by the authentication layer in front of the server.
"""

import logging
from typing import Any
from urllib.parse import unquote

from fastmcp.exceptions import ResourceError

from ..config import get_config
from ..database.loan_repository import LoanRepository
from ..database.repository import PaginatedResponse, PaginationParams
from ..database.session import run_blocking, session_scope
from ..database.user_repository import UserRepository, UserSearchParams, UserSortOptions
from ..models.user import Role, User
from .books import page_params, page_view

logger = logging.getLogger(__name__)

DIRECTORY_PAGE_SIZE = 50


def _parse_role(role: str) -> Role:
    for candidate in Role:
        if candidate.value.lower() == role.lower():
            return candidate
    raise ResourceError(f"Unknown role: {role}")


async def _search_users(
    name: str,
    search: UserSearchParams,
    pagination: PaginationParams,
    **filters: Any,
) -> dict[str, Any]:
    def query() -> PaginatedResponse[User]:
        with session_scope() as session:
            return UserRepository(session).search(
                search, pagination=pagination, sort_by=UserSortOptions.CREATED_AT
            )

    logger.debug("MCP Resource Request - %s: page=%d", name, pagination.page)
    try:
        page = await run_blocking(query)
    except Exception as e:
        logger.exception("Error in %s resource", name)
        raise ResourceError(f"Failed to retrieve users: {e!s}") from e

    data = page_view(page, "users", [user.model_dump(mode="json") for user in page.items])
    if filters:
        data["filters"] = filters
    return data


async def list_users_handler() -> dict[str, Any]:
    """Returns the newest accounts first."""
    return await users_page_handler(1)


async def users_page_handler(page: int) -> dict[str, Any]:
    return await _search_users(
        "users/list", UserSearchParams(), page_params(page, DIRECTORY_PAGE_SIZE)
    )


async def users_by_role_handler(role: str) -> dict[str, Any]:
    parsed = _parse_role(unquote(role))
    return await _search_users(
        "users/by-role",
        UserSearchParams(role=parsed),
        page_params(1, DIRECTORY_PAGE_SIZE),
        role=parsed.value,
    )


async def search_users_handler(query: str) -> dict[str, Any]:
    """Searches names and email addresses."""
    query = unquote(query).strip()
    if not query:
        raise ResourceError("Search text must not be empty")
    return await _search_users(
        "users/search",
        UserSearchParams(query=query),
        page_params(1, DIRECTORY_PAGE_SIZE),
        query=query,
    )


async def get_user_handler(user_id: str) -> dict[str, Any]:
    """Returns one account and how many loans it has open."""

    def fetch() -> tuple[User | None, int]:
        with session_scope() as session:
            user = UserRepository(session).get_by_id(user_id)
            open_loans = LoanRepository(session).count_open_loans(user_id) if user else 0
            return user, open_loans

    try:
        logger.debug("MCP Resource Request - users/%s", user_id)
        user, open_loans = await run_blocking(fetch)
    except Exception as e:
        logger.exception("Error in users/{user_id} resource")
        raise ResourceError(f"Failed to retrieve user: {e!s}") from e

    if user is None:
        raise ResourceError(f"User not found: {user_id}")

    data = user.model_dump(mode="json")
    data["open_loans"] = open_loans
    data["loan_limit"] = get_config().lending_rules.max_open_loans
    return data


user_resources: list[dict[str, Any]] = [
    {
        "uri": "library://users/list",
        "name": "Account Directory",
        "description": "Library accounts, newest first, 50 per page",
        "mime_type": "application/json",
        "handler": list_users_handler,
    },
    {
        "uri_template": "library://users/list/{page}",
        "name": "Account Directory Page",
        "description": "One page of the account directory",
        "mime_type": "application/json",
        "handler": users_page_handler,
    },
    {
        "uri_template": "library://users/by-role/{role}",
        "name": "Accounts by Role",
        "description": "Accounts with the given role: admin or member",
        "mime_type": "application/json",
        "handler": users_by_role_handler,
    },
    {
        "uri_template": "library://users/search/{query}",
        "name": "Account Search",
        "description": "Accounts whose name or email contains the given text (URL-encoded)",
        "mime_type": "application/json",
        "handler": search_users_handler,
    },
    {
        "uri_template": "library://users/{user_id}",
        "name": "Account Details",
        "description": "One account with its open loan count and loan limit",
        "mime_type": "application/json",
        "handler": get_user_handler,
    },
]

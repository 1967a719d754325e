"""
Pieces shared by the Lending Library tools.

Every tool takes the acting user's id as ``actor_id``. A tool has two
layers:

- a handler taking the raw ``arguments`` dict, which validates it, runs one
  repository call on a worker thread and answers with MCP content plus
  either structured ``data`` or ``isError`` and the refusal's error body
- a flat, typed function registered with FastMCP, whose signature is the
  tool's published input schema

The flat function calls the handler and turns refusals into ``ToolError``
with the reason code leading the message.
"""

import logging
from typing import Annotated, Any

from fastmcp.exceptions import ToolError
from pydantic import BaseModel, Field, ValidationError

from ..errors import ForbiddenError, LibraryError, RepositoryException
from ..models.user import Actor

logger = logging.getLogger(__name__)

USER_ID_PATTERN = r"^user_[a-f0-9]{12}$"
BOOK_ID_PATTERN = r"^book_[a-f0-9]{12}$"
LOAN_ID_PATTERN = r"^loan_[a-f0-9]{12}$"

ActorId = Annotated[
    str,
    Field(
        description="Verified id of the user performing the operation",
        pattern=USER_ID_PATTERN,
        examples=["user_8b1e0f3c9a27"],
    ),
]
UserId = Annotated[
    str,
    Field(description="ID of the account", pattern=USER_ID_PATTERN, examples=["user_2d4f6a8c0e1b"]),
]
BookId = Annotated[
    str,
    Field(description="ID of the title", pattern=BOOK_ID_PATTERN, examples=["book_3f9a1c2b7d4e"]),
]
LoanId = Annotated[
    str,
    Field(
        description="ID of the loan record", pattern=LOAN_ID_PATTERN, examples=["loan_0c5d7e9f1a2b"]
    ),
]


class ActorInput(BaseModel):
    """Arguments every tool takes: who is acting."""

    actor_id: ActorId


def provided(**arguments: Any) -> dict[str, Any]:
    """Drop parameters the caller left out (flat tool parameters default to None)."""
    return {name: value for name, value in arguments.items() if value is not None}


def tool_result(result: dict[str, Any]) -> dict[str, Any]:
    """
    Unwrap a handler result for FastMCP.

    Success returns the message and data as one structured object. Any
    error result raises ``ToolError``, prefixed with the reason code when
    the refusal carries one, so the client sees an MCP error result.
    """
    text = result["content"][0]["text"]
    if result.get("isError"):
        error = result.get("error")
        raise ToolError(f"{error['code']}: {text}" if error else text)
    return {"message": text, **result["data"]}


def text_content(text: str) -> list[dict[str, str]]:
    return [{"type": "text", "text": text}]


def success_response(message: str, **data: Any) -> dict[str, Any]:
    """Human-readable message plus structured data for follow-up calls."""
    return {"content": text_content(message), "data": data}


def invalid_input_response(tool: str, error: ValidationError) -> dict[str, Any]:
    logger.warning("Invalid %s parameters: %s", tool, error)
    return {
        "isError": True,
        "content": text_content(f"Invalid {tool} parameters: {error}"),
    }


def error_response(tool: str, error: LibraryError) -> dict[str, Any]:
    """
    Map a tagged refusal to an error result.

    The ``error`` body carries the reason code, its kind and the matching
    HTTP-style status.
    """
    logger.info("%s refused - %s: %s", tool, error.reason.value, error.message)
    return {
        "isError": True,
        "content": text_content(error.message),
        "error": error.to_payload(),
    }


def repository_error_response(tool: str, error: RepositoryException) -> dict[str, Any]:
    logger.error("%s failed in the database layer: %s", tool, error)
    return {
        "isError": True,
        "content": text_content(f"{tool} failed: {error!s}"),
    }


def unexpected_error_response(tool: str, error: Exception) -> dict[str, Any]:
    # Called from inside an except block so the traceback is logged
    logger.exception("Unexpected error in %s tool", tool)
    return {
        "isError": True,
        "content": text_content(f"An unexpected error occurred: {error!s}"),
    }


def require_admin(actor: Actor, action: str) -> None:
    """Raise ``ForbiddenError`` unless ``actor`` is an admin."""
    if not actor.is_admin:
        raise ForbiddenError(f"Only admins can {action}")

"""Lending Library MCP Server - FastMCP Implementation

Exposes the lending backend to MCP clients:
- Resources: the catalogue and the loan ledger (read-only)
- Tools: borrowing, returns, renewals, fines, catalogue and account admin

Clients connect over stdio by default, or Streamable HTTP when configured.
"""

import logging
import signal
import sys
from typing import Any

from fastmcp import FastMCP

from .config import LibraryConfig, get_config
from .database.session import get_db_manager
from .resources import all_resources
from .tools import all_tools

config = get_config()

# stdout carries the stdio protocol, so logs go to stderr
logging.basicConfig(
    level=getattr(logging, config.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)

logger = logging.getLogger(__name__)

INSTRUCTIONS = (
    "Lending Library MCP Server - a library lending backend. Use resources to "
    "browse the catalogue and loans, and tools to borrow, return and renew "
    "books, settle fines and administer the catalogue and accounts. Every tool "
    "takes the acting user's id as actor_id."
)


def build_server(settings: LibraryConfig) -> FastMCP:
    """Create the FastMCP app with every resource and tool registered."""
    app = FastMCP(
        name=settings.server_name,
        version=settings.server_version,
        instructions=INSTRUCTIONS,
    )

    for resource in all_resources:
        uri = resource.get("uri_template") or resource["uri"]
        logger.debug("Registering resource %s at %s", resource["name"], uri)
        app.resource(
            uri=uri,
            name=resource["name"],
            description=resource["description"],
            mime_type=resource["mime_type"],
        )(resource["handler"])

    for tool in all_tools:
        logger.debug("Registering tool %s", tool["name"])
        app.tool(name=tool["name"], description=tool["description"])(tool["handler"])

    logger.info("Registered %d resources and %d tools", len(all_resources), len(all_tools))
    return app


mcp = build_server(config)


def init_storage() -> None:
    """Create the schema if needed and check the database answers."""
    manager = get_db_manager()
    manager.init_database()
    if not manager.verify_connection():
        raise RuntimeError(f"Cannot connect to database at {manager.database_url}")


def _install_signal_handlers() -> None:
    def shutdown(signum: int, _frame: Any) -> None:
        logger.info("Received signal %s, closing database", signum)
        get_db_manager().close()
        sys.exit(0)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)


def run(settings: LibraryConfig) -> None:
    """Serve on the configured transport until interrupted."""
    if settings.debug:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Debug mode enabled - verbose protocol logging active")
    else:
        logging.getLogger("fastmcp").setLevel(logging.WARNING)

    _install_signal_handlers()

    if settings.transport == "stdio":
        logger.info("Serving on stdio")
        mcp.run(transport="stdio")
    else:
        logger.info("Serving on http://%s:%d", settings.http_host, settings.http_port)
        mcp.run(transport="streamable-http", host=settings.http_host, port=settings.http_port)


def main() -> None:
    """Main entry point for the MCP server."""
    logger.info(
        "Starting %s v%s (%s transport)",
        config.server_name,
        config.server_version,
        config.transport,
    )
    logger.info(
        "Lending rules: %d-day loans, %d open loans, %d renewals, %.2f/day fine",
        config.loan_period_days,
        config.max_open_loans,
        config.max_renewals,
        config.fine_per_day,
    )

    try:
        init_storage()
        run(config)
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception:
        logger.exception("MCP server failed")
        sys.exit(1)


if __name__ == "__main__":
    main()

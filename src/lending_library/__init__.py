"""
Lending Library MCP Server Package.

A library lending backend: a catalogue of titles with physical copies, a
ledger of loans, and the engine that borrows, returns and renews under the
library's lending rules, exposed to MCP clients.

Key Components:
- models: Pydantic models for data validation and serialization
- policy: Lending rules and the decisions built on them
- database: SQLAlchemy schema, sessions and repositories
- config: Configuration management with pydantic-settings
- resources: MCP resources (read-only endpoints)
- tools: MCP tools (operations with side effects)
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]

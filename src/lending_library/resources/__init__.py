"""Lending Library MCP Resources Package

Resources are the read-only half of the protocol: the catalogue, the
account directory and the loan ledger, addressed by ``library://`` URIs.
Anything that changes state is a tool.
"""

from .books import book_resources
from .loans import loan_resources
from .users import user_resources

# Combine all resources
all_resources = book_resources + user_resources + loan_resources

__all__ = [
    "all_resources",
    "book_resources",
    "loan_resources",
    "user_resources",
]

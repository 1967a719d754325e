"""
MCP Tools for the Lending Library Server.

Tools are the actions with side effects: the loan lifecycle, catalogue
administration and account management. Read-only views live in the
``resources`` package.

Each tool is a dictionary with ``name``, ``description`` and a typed
``handler`` whose signature FastMCP publishes as the input schema; the server
registers everything in ``all_tools``.
"""

from .accounts import deactivate_user, register_user, update_user
from .catalog import add_book, remove_book, update_book
from .circulation import borrow_book, mark_loan_lost, pay_fine, renew_loan, return_book

# Export all tools for server registration
all_tools = [
    borrow_book,
    return_book,
    renew_loan,
    mark_loan_lost,
    pay_fine,
    add_book,
    update_book,
    remove_book,
    register_user,
    update_user,
    deactivate_user,
]

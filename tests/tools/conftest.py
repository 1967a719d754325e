"""Fixtures shared by the tool tests."""

from contextlib import contextmanager

import pytest

TOOL_MODULES = (
    "lending_library.tools.accounts",
    "lending_library.tools.catalog",
    "lending_library.tools.circulation",
)


@pytest.fixture
def mock_get_session(test_db_session, monkeypatch):
    """Mock get_session to return the test session.

    This ensures that the tool handlers use the same database session
    as the test, allowing them to see the test data we create.
    """

    @contextmanager
    def _mock_get_session():
        """Return the test session instead of creating a new one."""
        yield test_db_session

    for module in TOOL_MODULES:
        monkeypatch.setattr(f"{module}.get_session", _mock_get_session)

    return test_db_session

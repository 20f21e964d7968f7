"""Unit-test conftest: DB isolation safety net.

Provides an ``autouse`` fixture that prevents any unit test from
accidentally opening a real Postgres connection. This catches the
class of bugs where ``create_app()`` or ``get_session()`` is called
without mocking the database layer first.

The approach:
1. Before every unit test, reset the storage module's shared ``Database``
   so it starts from scratch.
2. Monkey-patch the storage accessors to raise if any code path
   attempts a real DB connection.
"""

from __future__ import annotations

import pytest

import palette_relay.storage as _storage_mod


def _install_db_guard(monkeypatch: pytest.MonkeyPatch) -> None:
    """Install guard functions that prevent real DB access in unit tests."""

    def _guarded_get_database(settings=None):
        raise RuntimeError(
            "Unit test attempted a real DB connection via get_database(). "
            "Mock the database dependency instead."
        )

    def _guarded_get_session():
        raise RuntimeError(
            "Unit test attempted a real DB connection via get_session(). "
            "Mock the database dependency instead."
        )

    monkeypatch.setattr(_storage_mod, "get_database", _guarded_get_database)
    monkeypatch.setattr(_storage_mod, "get_session", _guarded_get_session)


@pytest.fixture(autouse=True)
def _isolate_db(monkeypatch: pytest.MonkeyPatch) -> None:
    """Prevent unit tests from reaching a real Postgres connection."""
    monkeypatch.setattr(_storage_mod, "_database", None)
    _install_db_guard(monkeypatch)

"""Pytest configuration and fixtures.

Every fixture works on temporary SQLite files so tests never touch a real
local queue or store.
"""
from __future__ import annotations

from pathlib import Path
import sys

import pytest

SRC_DIR = Path(__file__).resolve().parents[1] / "src" / "python"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from ledgersync.config import Settings  # noqa: E402
from ledgersync.local_store import LocalStore  # noqa: E402
from ledgersync.repository import Repository  # noqa: E402


@pytest.fixture()
def local_db_path(tmp_path: Path) -> Path:
    return tmp_path / "local.db"


@pytest.fixture()
def store_db_path(tmp_path: Path) -> Path:
    return tmp_path / "store.db"


@pytest.fixture()
def local_store(local_db_path: Path) -> LocalStore:
    store = LocalStore(local_db_path)
    store.connect()
    yield store
    store.close()


@pytest.fixture()
def repository(store_db_path: Path) -> Repository:
    store = Repository(store_db_path)
    store.connect()
    yield store
    store.close()


@pytest.fixture()
def settings(local_db_path: Path, store_db_path: Path) -> Settings:
    """Settings that sync in-process into the temporary store."""
    return Settings(local_db_path=local_db_path, store_db_path=store_db_path)


@pytest.fixture()
def sample_transaction_payload() -> dict:
    return {
        "id": "tx-1",
        "date": "2024-03-05",
        "kind": "expense",
        "description": "Groceries",
        "category": "FOOD",
        "amount": "42.10",
        "attribution_tag": "SHARED",
        "method": "card",
        "note": "",
        "paid_by": "PARTY_A",
        "created_at": "2024-03-05T10:00:00.000+00:00",
        "updated_at": "2024-03-05T10:00:00.000+00:00",
    }


@pytest.fixture()
def sample_card_payload() -> dict:
    return {
        "id": "c1",
        "name": "Main card",
        "bank": "C6",
        "holder": "PARTY_A",
        "last_digits": "1234",
        "default_attribution": "PARTY_A",
        "active": True,
    }

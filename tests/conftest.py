"""Pytest configuration and fixtures for db-testsets tests."""
from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel

from db_testsets.db import dispose_engines, get_engine
from db_testsets.registry import TestSetRegistry

from sample_models import Product  # noqa: F401

pytest_plugins = ["pytester"]


DEFAULT_SCRIPT = """
DELETE FROM product
GO
INSERT INTO product (id, name, price) VALUES (1, 'Apple', 10)
GO
INSERT INTO product (id, name, price) VALUES (2, 'Pear', 20)
"""

EMPTY_SCRIPT = "DELETE FROM product"


@pytest.fixture(autouse=True)
def reset_cached_engines():
    """Dispose cached engines before and after each test.

    Every test gets its own SQLite file, so pooled connections must not leak
    from one test into the next.
    """
    dispose_engines()

    yield

    dispose_engines()


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'test.db'}"


@pytest.fixture
def engine(db_url: str) -> Engine:
    engine = get_engine(db_url)
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture
def registry(db_url: str, engine: Engine) -> TestSetRegistry:
    registry = TestSetRegistry(db_url)
    registry.define("Default", lambda setup: setup.from_sql("default.sql", DEFAULT_SCRIPT))
    registry.define("Empty", lambda setup: setup.from_sql("empty.sql", EMPTY_SCRIPT))
    return registry

"""Database configuration module.

Supports SQLite (local test databases), PostgreSQL via the pg8000 driver,
or any SQLAlchemy URL. Configuration is read from environment variables.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy.engine import URL


_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class DatabaseConfig:
    """Database configuration container.

    Attributes:
        db_type: Database type, one of "sqlite", "postgresql" or "url"
        sqlite_path: Path to SQLite database file (only for sqlite)
        url: Full SQLAlchemy URL (only for url)
        host: PostgreSQL host
        port: PostgreSQL port
        database: Database name
        user: Database user
        password: Database password
        atomic_apply: Apply each test set inside a single transaction
    """

    db_type: str  # "sqlite", "postgresql" or "url"

    # SQLite config
    sqlite_path: Path | None = None

    # Explicit URL
    url: str | None = None

    # PostgreSQL config
    host: str | None = None
    port: int | None = None
    database: str | None = None
    user: str | None = None
    password: str | None = None

    atomic_apply: bool = False

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """Create configuration from environment variables.

        Environment variables:
            DBTS_DB_URL: SQLAlchemy URL; when set it takes precedence
            DBTS_DB_TYPE: "sqlite" or "postgresql" (default: "sqlite")
            DBTS_DB_PATH: SQLite database path (default: "testsets.db")
            DBTS_DB_HOST: PostgreSQL host
            DBTS_DB_PORT: PostgreSQL port
            DBTS_DB_NAME: Database name (default: "testsets")
            DBTS_DB_USER: Database user
            DBTS_DB_PASSWORD: Database password
            DBTS_ATOMIC_APPLY: "true" to apply test sets in one transaction
        """
        atomic_apply = os.getenv("DBTS_ATOMIC_APPLY", "false").strip().lower() in _TRUTHY

        url = os.getenv("DBTS_DB_URL")
        if url:
            return cls(db_type="url", url=url, atomic_apply=atomic_apply)

        db_type = os.getenv("DBTS_DB_TYPE", "sqlite").lower()

        if db_type == "sqlite":
            return cls(
                db_type="sqlite",
                sqlite_path=Path(os.getenv("DBTS_DB_PATH", "testsets.db")).resolve(),
                atomic_apply=atomic_apply,
            )

        port = os.getenv("DBTS_DB_PORT")

        return cls(
            db_type=db_type,
            host=os.getenv("DBTS_DB_HOST"),
            port=int(port) if port else None,
            database=os.getenv("DBTS_DB_NAME", "testsets"),
            user=os.getenv("DBTS_DB_USER"),
            password=os.getenv("DBTS_DB_PASSWORD"),
            atomic_apply=atomic_apply,
        )

    def validate(self) -> None:
        """Validate the configuration.

        Raises:
            ValueError: If required configuration is missing.
        """
        if self.db_type == "sqlite":
            if not self.sqlite_path:
                raise ValueError("DBTS_DB_PATH is required for SQLite")
        elif self.db_type == "postgresql":
            if not self.host:
                raise ValueError("DBTS_DB_HOST is required for PostgreSQL")
            if not self.user:
                raise ValueError("DBTS_DB_USER is required for PostgreSQL")
        elif self.db_type == "url":
            if not self.url:
                raise ValueError("DBTS_DB_URL is required")
        else:
            raise ValueError(f"Unsupported database type: {self.db_type}")

    def connection_string(self) -> str:
        """Render the SQLAlchemy URL for this configuration.

        Raises:
            ValueError: If the configuration is invalid.
        """
        self.validate()

        if self.db_type == "url":
            return str(self.url)
        if self.db_type == "sqlite":
            return f"sqlite:///{self.sqlite_path}"

        url = URL.create(
            "postgresql+pg8000",
            username=self.user,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.database,
        )
        return url.render_as_string(hide_password=False)

"""Persistence layer for stepwright workflows, models, reviews and usage."""

from __future__ import annotations

from typing import Optional

from ..config import StepwrightConfig, load_config
from .inmemory import (
    InMemoryModelCatalog,
    InMemoryReviewRepository,
    InMemoryUsageLedger,
    InMemoryWorkflowRepository,
)
from .models import TERMINAL_STATUSES, WorkflowBackup, WorkflowInstance
from .repository import ModelCatalog, ReviewRepository, UsageLedger, WorkflowRepository
from .sqlite import SQLiteModelCatalog, SQLiteReviewRepository, SQLiteWorkflowRepository

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresWorkflowRepository
except ImportError:  # pragma: no cover - optional dependency
    PostgresWorkflowRepository = None  # type: ignore

_repository_instance: WorkflowRepository | None = None
_catalog_instance: ModelCatalog | None = None
_review_instance: ReviewRepository | None = None
_ledger_instance: UsageLedger | None = None


def _sqlite_path(database_url: str) -> str:
    return database_url.replace("sqlite://", "", 1)


def get_repository(
    database_url: Optional[str] = None, config: Optional[StepwrightConfig] = None
) -> WorkflowRepository:
    """Factory function to obtain a workflow repository.

    The backend is selected from ``database_url`` which can be provided
    explicitly or through the loaded configuration (which already honours
    ``STEPWRIGHT_DATABASE_URL`` and ``DATABASE_URL``). When no database is
    configured, an in-memory repository is returned.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = database_url or config.database_url

    if not database_url:
        _repository_instance = InMemoryWorkflowRepository()
        return _repository_instance

    if database_url.startswith("sqlite://"):
        _repository_instance = SQLiteWorkflowRepository(_sqlite_path(database_url))
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        if PostgresWorkflowRepository is None:
            raise RuntimeError("Postgres support not available")
        _repository_instance = PostgresWorkflowRepository(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _repository_instance


def get_model_catalog(
    database_url: Optional[str] = None, config: Optional[StepwrightConfig] = None
) -> ModelCatalog:
    """Return the model catalog for the configured database.

    Only SQLite and in-memory catalogs exist; other URLs fall back to memory.
    """

    global _catalog_instance
    if _catalog_instance is not None and database_url is None and config is None:
        return _catalog_instance

    config = config or load_config()
    database_url = database_url or config.database_url
    if database_url and database_url.startswith("sqlite://"):
        _catalog_instance = SQLiteModelCatalog(_sqlite_path(database_url))
    else:
        _catalog_instance = InMemoryModelCatalog()
    return _catalog_instance


def get_review_repository(
    database_url: Optional[str] = None, config: Optional[StepwrightConfig] = None
) -> ReviewRepository:
    global _review_instance
    if _review_instance is not None and database_url is None and config is None:
        return _review_instance

    config = config or load_config()
    database_url = database_url or config.database_url
    if database_url and database_url.startswith("sqlite://"):
        _review_instance = SQLiteReviewRepository(_sqlite_path(database_url))
    else:
        _review_instance = InMemoryReviewRepository()
    return _review_instance


def get_ledger(
    ledger_url: Optional[str] = None, config: Optional[StepwrightConfig] = None
) -> UsageLedger:
    """Return the usage ledger.

    ``ledger_url`` is an SQLAlchemy async URL such as
    ``sqlite+aiosqlite:///usage.db``. Without one the ledger lives in memory.
    """

    global _ledger_instance
    if _ledger_instance is not None and ledger_url is None and config is None:
        return _ledger_instance

    config = config or load_config()
    ledger_url = ledger_url or config.ledger_url
    if ledger_url:
        from ..db import UsageLedgerDB

        _ledger_instance = UsageLedgerDB(ledger_url)
    else:
        _ledger_instance = InMemoryUsageLedger()
    return _ledger_instance


def reset_factories() -> None:
    """Forget cached backends. Used by tests and the CLI between runs."""

    global _repository_instance, _catalog_instance, _review_instance, _ledger_instance
    _repository_instance = None
    _catalog_instance = None
    _review_instance = None
    _ledger_instance = None


__all__ = [
    "TERMINAL_STATUSES",
    "WorkflowBackup",
    "WorkflowInstance",
    "WorkflowRepository",
    "ModelCatalog",
    "ReviewRepository",
    "UsageLedger",
    "SQLiteWorkflowRepository",
    "SQLiteModelCatalog",
    "SQLiteReviewRepository",
    "PostgresWorkflowRepository",
    "InMemoryWorkflowRepository",
    "InMemoryModelCatalog",
    "InMemoryReviewRepository",
    "InMemoryUsageLedger",
    "get_repository",
    "get_model_catalog",
    "get_review_repository",
    "get_ledger",
    "reset_factories",
]

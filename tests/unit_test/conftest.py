"""
Shared fixtures for unit tests.

The fake catalog client stands in for a live PostgreSQL server: it serves a
fixed statistics snapshot and records every statement it is asked to run.
"""

import logging
from typing import List, Optional, Sequence

import pytest

from pgmaint.config import ConnectionParams, ReindexFilters, ReindexScope, ReindexSettings
from pgmaint.db.connection import CatalogClient
from pgmaint.exceptions import DatabaseClientError
from pgmaint.reindex.models import CandidateRecord, ReindexCommand

MB = 1024 * 1024


class FakeCatalogClient(CatalogClient):
    def __init__(
        self,
        stats: Optional[List[CandidateRecord]] = None,
        version: int = 160002,
        version_error: bool = False,
        stats_error: bool = False,
        fail_on: Optional[str] = None,
    ):
        super().__init__(ConnectionParams())
        self.stats = list(stats or [])
        self.version = version
        self.version_error = version_error
        self.stats_error = stats_error
        self.fail_on = fail_on
        self.stats_calls: List[Sequence[str]] = []
        self.executed: List[str] = []
        self.closed = False

    def server_version_num(self) -> int:
        if self.version_error:
            raise DatabaseClientError("connection refused")
        return self.version

    def fetch_index_stats(self, schemas: Sequence[str]) -> List[CandidateRecord]:
        self.stats_calls.append(tuple(schemas))
        if self.stats_error:
            raise DatabaseClientError("permission denied for pg_stat_all_indexes")
        return [r for r in self.stats if r.schemaname in schemas]

    def execute(self, command: ReindexCommand) -> None:
        if self.fail_on is not None and command.name == self.fail_on:
            raise DatabaseClientError(f'deadlock detected while rebuilding "{command.name}"')
        self.executed.append(command.text)

    def close(self) -> None:
        self.closed = True


def record(schema, table, index, scans, table_mb=200, index_mb=80) -> CandidateRecord:
    return CandidateRecord(
        schemaname=schema,
        tablename=table,
        indexname=index,
        idx_scan=scans,
        table_bytes=table_mb * MB,
        index_bytes=index_mb * MB,
    )


@pytest.fixture
def make_record():
    return record


@pytest.fixture
def snapshot() -> List[CandidateRecord]:
    """A small catalog resembling a document-management database."""
    return [
        record("public", "documents_document", "documents_document_pkey", 250000, 900, 120),
        record("public", "documents_document", "documents_document_checksum", 90000, 900, 60),
        record("public", "documents_tag", "documents_tag_pkey", 500000, 150, 55),
        record("public", "django_session", "django_session_pkey", 20000, 40, 10),
        record("public", "documents_note", "documents_note_pkey", 9999, 300, 70),
        record("audit", "auditlog_logentry", "auditlog_logentry_pkey", 400000, 500, 200),
    ]


@pytest.fixture
def filters() -> ReindexFilters:
    return ReindexFilters(
        schemas=("public",),
        min_idx_scans=10000,
        min_table_bytes=100 * MB,
        min_index_bytes=50 * MB,
    )


@pytest.fixture
def make_settings(filters, tmp_path):
    def _make(**overrides) -> ReindexSettings:
        values = {
            "connection": ConnectionParams(),
            "filters": filters,
            "scope": ReindexScope.INDEX,
            "concurrently": True,
            "dry_run": False,
            "log_file": tmp_path / "reindex.log",
        }
        values.update(overrides)
        return ReindexSettings(**values)

    return _make


@pytest.fixture
def fake_client(snapshot) -> FakeCatalogClient:
    return FakeCatalogClient(stats=snapshot)


@pytest.fixture
def client_factory():
    """Build FakeCatalogClient instances and keep them for inspection."""
    created = []

    def _factory(**kwargs) -> FakeCatalogClient:
        client = FakeCatalogClient(**kwargs)
        created.append(client)
        return client

    _factory.created = created
    return _factory


@pytest.fixture(autouse=True)
def reset_pgmaint_logging():
    """Drop handlers installed by setup_logging so they do not leak between tests."""
    yield
    logger = logging.getLogger("pgmaint")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)

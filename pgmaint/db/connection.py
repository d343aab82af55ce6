# Copyright 2025 ApeCloud, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Catalog clients used by the reindex tool.

Two ways of reaching the server are supported:

- ``PostgresCatalogClient`` talks to the server directly with psycopg over a
  single autocommit connection.
- ``DockerPsqlCatalogClient`` runs ``psql`` inside the database container
  through ``docker exec`` for every call, for setups where the port is not
  published to the host.

In both cases the password only travels through keyword arguments or the
child process environment, never through a process argument list.
"""

import logging
import os
import subprocess
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Sequence

import psycopg
from psycopg.rows import namedtuple_row

from pgmaint.config import ConnectionParams
from pgmaint.exceptions import DatabaseClientError
from pgmaint.reindex.models import CandidateRecord, ReindexCommand

logger = logging.getLogger(__name__)

APPLICATION_NAME = "pgmaint"

VERSION_SQL = "SHOW server_version_num"

INDEX_STATS_SQL = """
SELECT
    n.nspname                         AS schemaname,
    t.relname                         AS tablename,
    i.relname                         AS indexname,
    COALESCE(s.idx_scan, 0)           AS idx_scan,
    pg_total_relation_size(t.oid)     AS table_bytes,
    pg_relation_size(i.oid)           AS index_bytes
FROM pg_stat_all_indexes AS s
JOIN pg_class AS i ON i.oid = s.indexrelid
JOIN pg_class AS t ON t.oid = s.relid
JOIN pg_namespace AS n ON n.oid = t.relnamespace
WHERE n.nspname = ANY ({schemas})
ORDER BY idx_scan DESC, index_bytes DESC
"""

# psql output separators; neither can appear in an identifier
FIELD_SEPARATOR = "\x1f"
RECORD_SEPARATOR = "\x1e"


class CatalogClient(ABC):
    """Read access to index statistics plus execution of rebuild statements."""

    def __init__(self, params: ConnectionParams):
        self.params = params

    @abstractmethod
    def server_version_num(self) -> int:
        """Return the server's ``server_version_num`` (e.g. 160002)."""

    @abstractmethod
    def fetch_index_stats(self, schemas: Sequence[str]) -> List[CandidateRecord]:
        """Return usage and size statistics of every index in ``schemas``."""

    @abstractmethod
    def execute(self, command: ReindexCommand) -> None:
        """Run one rebuild statement and wait for it to finish."""

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class PostgresCatalogClient(CatalogClient):
    """Direct connection through psycopg."""

    def __init__(self, params: ConnectionParams):
        super().__init__(params)
        self._connection: Optional[psycopg.Connection] = None

    def _connect(self) -> psycopg.Connection:
        if self._connection is None:
            kwargs = {
                "host": self.params.host,
                "port": self.params.port,
                "user": self.params.user,
                "dbname": self.params.dbname,
                "application_name": APPLICATION_NAME,
                # REINDEX CONCURRENTLY cannot run inside a transaction block
                "autocommit": True,
            }
            password = self.params.password.get_secret_value()
            if password:
                kwargs["password"] = password
            logger.debug(f"Connecting to {self.params.host}:{self.params.port}/{self.params.dbname}")
            try:
                self._connection = psycopg.connect(**kwargs)
            except psycopg.Error as e:
                raise DatabaseClientError(f"Failed to connect to PostgreSQL: {e}") from e
        return self._connection

    def server_version_num(self) -> int:
        conn = self._connect()
        try:
            with conn.cursor() as cur:
                cur.execute(VERSION_SQL)
                row = cur.fetchone()
        except psycopg.Error as e:
            raise DatabaseClientError(f"Failed to query server version: {e}") from e
        if not row:
            raise DatabaseClientError("Server returned no version")
        return _parse_version(row[0])

    def fetch_index_stats(self, schemas: Sequence[str]) -> List[CandidateRecord]:
        conn = self._connect()
        query = INDEX_STATS_SQL.format(schemas="%(schemas)s")
        try:
            with conn.cursor(row_factory=namedtuple_row) as cur:
                cur.execute(query, {"schemas": list(schemas)})
                rows = cur.fetchall()
        except psycopg.Error as e:
            raise DatabaseClientError(f"Failed to read index statistics: {e}") from e
        return [
            CandidateRecord(
                schemaname=row.schemaname,
                tablename=row.tablename,
                indexname=row.indexname,
                idx_scan=int(row.idx_scan),
                table_bytes=int(row.table_bytes),
                index_bytes=int(row.index_bytes),
            )
            for row in rows
        ]

    def execute(self, command: ReindexCommand) -> None:
        conn = self._connect()
        try:
            with conn.cursor() as cur:
                cur.execute(command.statement)
        except psycopg.Error as e:
            raise DatabaseClientError(str(e).strip()) from e

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None


class DockerPsqlCatalogClient(CatalogClient):
    """``psql`` run inside the database container, one process per call."""

    def __init__(self, params: ConnectionParams, runner: Callable[..., subprocess.CompletedProcess] = subprocess.run):
        super().__init__(params)
        self._runner = runner

    def build_command(self, variables: Optional[Dict[str, str]] = None) -> List[str]:
        cmd = [
            "docker",
            "exec",
            "-i",
            # Forwarded from our environment, so the value never shows up in ps
            "-e",
            "PGPASSWORD",
            self.params.container,
            "psql",
            "-X",
            "-A",
            "-t",
            "-F",
            FIELD_SEPARATOR,
            "-R",
            RECORD_SEPARATOR,
            "-v",
            "ON_ERROR_STOP=1",
            "-h",
            self.params.host,
            "-p",
            str(self.params.port),
            "-U",
            self.params.user,
            "-d",
            self.params.dbname,
        ]
        for name, value in (variables or {}).items():
            cmd.extend(["-v", f"{name}={value}"])
        cmd.extend(["-f", "-"])
        return cmd

    def _child_env(self) -> Dict[str, str]:
        env = dict(os.environ)
        env["PGPASSWORD"] = self.params.password.get_secret_value()
        return env

    def run_sql(self, script: str, variables: Optional[Dict[str, str]] = None) -> str:
        cmd = self.build_command(variables)
        try:
            completed = self._runner(
                cmd,
                input=script,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                env=self._child_env(),
            )
        except OSError as e:
            raise DatabaseClientError(f"Failed to run docker exec: {e}") from e
        if completed.returncode != 0:
            message = (completed.stderr or "").strip() or (completed.stdout or "").strip() or "psql failed"
            raise DatabaseClientError(f"psql exited with {completed.returncode}: {message}")
        return completed.stdout

    @staticmethod
    def parse_rows(output: str) -> List[List[str]]:
        # psql ends the last record with a newline instead of the separator
        if output.endswith("\n"):
            output = output[:-1]
        return [record.split(FIELD_SEPARATOR) for record in output.split(RECORD_SEPARATOR) if record]

    def server_version_num(self) -> int:
        rows = self.parse_rows(self.run_sql(VERSION_SQL + ";\n"))
        if not rows:
            raise DatabaseClientError("Server returned no version")
        return _parse_version(rows[0][0])

    def fetch_index_stats(self, schemas: Sequence[str]) -> List[CandidateRecord]:
        # psql substitutes :'schemas' as a properly quoted literal
        query = INDEX_STATS_SQL.format(schemas="string_to_array(:'schemas', ',')").rstrip() + ";\n"
        output = self.run_sql(query, variables={"schemas": ",".join(schemas)})
        records = []
        for row in self.parse_rows(output):
            if len(row) != 6:
                raise DatabaseClientError(f"Unexpected psql row with {len(row)} fields")
            schemaname, tablename, indexname, idx_scan, table_bytes, index_bytes = row
            try:
                record = CandidateRecord(
                    schemaname=schemaname,
                    tablename=tablename,
                    indexname=indexname,
                    idx_scan=int(idx_scan),
                    table_bytes=int(table_bytes),
                    index_bytes=int(index_bytes),
                )
            except ValueError:
                raise DatabaseClientError(f"Non-numeric statistics for index {indexname!r}") from None
            records.append(record)
        return records

    def execute(self, command: ReindexCommand) -> None:
        self.run_sql(command.text + ";\n")


def create_catalog_client(params: ConnectionParams) -> CatalogClient:
    """Pick the client matching the connection parameters."""
    if params.proxied:
        logger.debug(f"Using psql inside container {params.container}")
        return DockerPsqlCatalogClient(params)
    return PostgresCatalogClient(params)


def _parse_version(value) -> int:
    try:
        return int(str(value).strip())
    except ValueError:
        raise DatabaseClientError(f"Unparseable server_version_num: {value!r}") from None

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
Configuration for the reindex and backup tools.

Values are resolved in three layers: built-in defaults, then the process
environment (optionally populated from a ``.env`` file by the CLI), then
command-line flags. The result is a frozen pydantic model that is passed
explicitly to every stage.
"""

from enum import Enum
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError

from pgmaint.exceptions import ConfigurationError, InvalidScopeError

MIB = 1024 * 1024


class ReindexScope(str, Enum):
    """What a candidate index turns into when it is rebuilt"""

    INDEX = "index"
    TABLE = "table"


class ConnectionParams(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str = Field("localhost", description="Server host name or address")
    port: int = Field(5432, ge=1, le=65535, description="Server port")
    user: str = Field("paperless", description="Role used to connect")
    password: SecretStr = Field(SecretStr(""), description="Password, passed to the client via its environment")
    dbname: str = Field("paperless", description="Target database")
    container: Optional[str] = Field(
        None, description="Docker container that runs the server; when set, psql is invoked inside it"
    )

    @property
    def proxied(self) -> bool:
        return bool(self.container)


class ReindexFilters(BaseModel):
    model_config = ConfigDict(frozen=True)

    schemas: Tuple[str, ...] = Field(..., min_length=1, description="Schema allow-list")
    min_idx_scans: int = Field(..., ge=0, description="Minimum idx_scan, inclusive")
    min_table_bytes: int = Field(..., ge=0, description="Minimum total table size in bytes, inclusive")
    min_index_bytes: int = Field(..., ge=0, description="Minimum index size in bytes, inclusive")


class ReindexSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    connection: ConnectionParams
    filters: ReindexFilters
    scope: ReindexScope = ReindexScope.INDEX
    concurrently: bool = True
    dry_run: bool = False
    log_file: Path = Path("./log/pg_reindex_filtered.log")


class BackupSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    connection: ConnectionParams
    backup_dir: Path = Field(..., description="Directory that receives the dumps")
    retention_days: int = Field(30, ge=0, description="Dumps older than this many whole days are removed")
    log_file: Optional[Path] = None


# Option name -> (environment variable, default)
REINDEX_OPTIONS: Dict[str, Tuple[str, str]] = {
    "host": ("PGHOST", "localhost"),
    "port": ("PGPORT", "5432"),
    "user": ("PGUSER", "paperless"),
    "db": ("PGDATABASE", "paperless"),
    "password": ("PGPASSWORD", ""),
    "container": ("POSTGRES_CONTAINER", ""),
    "schemas": ("SCHEMAS", "public"),
    "min_idx_scans": ("MIN_IDX_SCANS", "10000"),
    "min_table_size_mb": ("MIN_TABLE_SIZE_MB", "100"),
    "min_index_size_mb": ("MIN_INDEX_SIZE_MB", "50"),
    "scope": ("REINDEX_SCOPE", "index"),
    "concurrently": ("REINDEX_CONCURRENTLY", "true"),
    "dry_run": ("DRY_RUN", "false"),
    "log_file": ("LOG_FILE", "./log/pg_reindex_filtered.log"),
}

BACKUP_OPTIONS: Dict[str, Tuple[str, str]] = {
    "host": ("PGHOST", "localhost"),
    "port": ("PGPORT", "5432"),
    "user": ("PGUSER", "paperless"),
    "db": ("PGDATABASE", "paperless"),
    "password": ("PGPASSWORD", ""),
    "container": ("POSTGRES_CONTAINER", "paperless-db-1"),
    "backup_dir": ("BACKUP_DIR", "/volume1/NetBackup/paperless"),
    "retention_days": ("BACKUP_RETENTION_DAYS", "30"),
    "log_file": ("BACKUP_LOG_FILE", ""),
}


def merge_layers(
    options: Mapping[str, Tuple[str, str]],
    environ: Mapping[str, str],
    overrides: Optional[Mapping[str, Optional[str]]] = None,
) -> Dict[str, str]:
    """Return raw string values: defaults, replaced by environment, replaced by flags."""
    overrides = overrides or {}
    raw = {}
    for name, (env_name, default) in options.items():
        value = environ.get(env_name, default)
        if overrides.get(name) is not None:
            value = overrides[name]
        raw[name] = value
    return raw


def parse_bool(name: str, value: str) -> bool:
    normalized = value.strip().lower()
    if normalized == "true":
        return True
    if normalized == "false":
        return False
    raise ConfigurationError(f"--{_flag(name)} must be 'true' or 'false' (got: {value})")


def parse_int(name: str, value: str) -> int:
    try:
        number = int(value.strip())
    except ValueError:
        raise ConfigurationError(f"--{_flag(name)} must be an integer (got: {value})") from None
    if number < 0:
        raise ConfigurationError(f"--{_flag(name)} must not be negative (got: {value})")
    return number


def parse_schemas(value: str) -> Tuple[str, ...]:
    """Split a comma-separated schema list, dropping blanks and duplicates."""
    schemas = []
    for item in value.split(","):
        item = item.strip()
        if item and item not in schemas:
            schemas.append(item)
    if not schemas:
        raise ConfigurationError(f"--schemas must name at least one schema (got: {value!r})")
    return tuple(schemas)


def parse_scope(value: str) -> ReindexScope:
    try:
        return ReindexScope(value.strip().lower())
    except ValueError:
        raise InvalidScopeError(f"--scope must be 'index' or 'table' (got: {value})") from None


def build_connection(raw: Mapping[str, str]) -> ConnectionParams:
    try:
        return ConnectionParams(
            host=raw["host"],
            port=parse_int("port", raw["port"]),
            user=raw["user"],
            password=SecretStr(raw["password"]),
            dbname=raw["db"],
            container=raw["container"].strip() or None,
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid connection settings: {_first_error(e)}") from None


def resolve_reindex_settings(
    environ: Mapping[str, str], overrides: Optional[Mapping[str, Optional[str]]] = None
) -> ReindexSettings:
    """
    Build the reindex configuration.

    Args:
        environ: Process environment (already merged with any .env file)
        overrides: Command-line values keyed by option name; None means "not given"

    Raises:
        InvalidScopeError: scope is not one of the two variants
        ConfigurationError: any other invalid value
    """
    raw = merge_layers(REINDEX_OPTIONS, environ, overrides)

    scope = parse_scope(raw["scope"])
    concurrently = parse_bool("concurrently", raw["concurrently"])
    dry_run = parse_bool("dry_run", raw["dry_run"])
    filters = ReindexFilters(
        schemas=parse_schemas(raw["schemas"]),
        min_idx_scans=parse_int("min_idx_scans", raw["min_idx_scans"]),
        min_table_bytes=parse_int("min_table_size_mb", raw["min_table_size_mb"]) * MIB,
        min_index_bytes=parse_int("min_index_size_mb", raw["min_index_size_mb"]) * MIB,
    )
    log_file = raw["log_file"].strip()
    if not log_file:
        raise ConfigurationError("--log-file must not be empty")

    return ReindexSettings(
        connection=build_connection(raw),
        filters=filters,
        scope=scope,
        concurrently=concurrently,
        dry_run=dry_run,
        log_file=Path(log_file),
    )


def resolve_backup_settings(
    environ: Mapping[str, str], overrides: Optional[Mapping[str, Optional[str]]] = None
) -> BackupSettings:
    raw = merge_layers(BACKUP_OPTIONS, environ, overrides)
    backup_dir = raw["backup_dir"].strip()
    if not backup_dir:
        raise ConfigurationError("--backup-dir must not be empty")
    log_file = raw["log_file"].strip()
    return BackupSettings(
        connection=build_connection(raw),
        backup_dir=Path(backup_dir),
        retention_days=parse_int("retention_days", raw["retention_days"]),
        log_file=Path(log_file) if log_file else None,
    )


def _flag(name: str) -> str:
    return name.replace("_", "-")


def _first_error(e: ValidationError) -> str:
    error = e.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    return f"{location}: {error.get('msg')}"

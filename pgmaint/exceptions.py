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
Error taxonomy for the maintenance tools.

Every error carries the process exit code the CLI reports for it, so the
entry points only need to log the message and exit with ``exc.exit_code``.
"""

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_PRECONDITION = 2
EXIT_INVALID_SCOPE = 3
EXIT_CATALOG_QUERY = 4
EXIT_COMMAND_FAILED = 5


class PgMaintError(Exception):
    """Base class for all maintenance tool errors."""

    exit_code = EXIT_USAGE

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(PgMaintError):
    """Invalid flag, environment value or unknown option."""

    exit_code = EXIT_USAGE


class InvalidScopeError(ConfigurationError):
    """Reindex scope is neither 'index' nor 'table'."""

    exit_code = EXIT_INVALID_SCOPE


class PreconditionError(PgMaintError):
    """The server cannot honour the requested options."""

    exit_code = EXIT_PRECONDITION


class CatalogQueryError(PgMaintError):
    """Reading index statistics from the catalog failed."""

    exit_code = EXIT_CATALOG_QUERY


class CommandExecutionError(PgMaintError):
    """A rebuild statement failed on the server."""

    exit_code = EXIT_COMMAND_FAILED

    def __init__(self, message: str, statement: str) -> None:
        super().__init__(message)
        self.statement = statement


class DatabaseClientError(PgMaintError):
    """The client could not reach the server or a statement failed."""

    exit_code = EXIT_USAGE


class BackupError(PgMaintError):
    """Dump, compression or rename of a backup file failed."""

    exit_code = EXIT_USAGE

#!/usr/bin/env python3
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
Reindex PostgreSQL objects while filtering out tiny tables and rarely-used indexes.

Default behavior: REINDEX INDEX CONCURRENTLY on frequently-used, non-tiny
indexes in 'public'. Every option can also be set through the environment
(or a .env file); flags win over the environment.

Usage:
    # Safe defaults (index-level, concurrently):
    pgmaint-reindex --container paperless-db-1

    # Table-level rebuilds during a maintenance window:
    pgmaint-reindex --scope table --concurrently false --min-idx-scans 5000

    # Preview only:
    pgmaint-reindex --dry-run true
"""

import argparse
import logging
import os
import sys
from typing import Callable, List, Mapping, Optional, TextIO

import dotenv

from pgmaint.config import REINDEX_OPTIONS, resolve_reindex_settings
from pgmaint.db.connection import CatalogClient, create_catalog_client
from pgmaint.exceptions import EXIT_OK, EXIT_USAGE, ConfigurationError, PgMaintError
from pgmaint.log import setup_logging

logger = logging.getLogger("pgmaint.cli.reindex")

# (flag, option name, metavar, help)
FLAGS = [
    ("--host", "host", "HOST", "Server host"),
    ("--port", "port", "PORT", "Server port"),
    ("--user", "user", "USER", "Database role"),
    ("--db", "db", "DBNAME", "Database name"),
    ("--password", "password", "PASSWORD", "Password (prefer the PGPASSWORD environment variable)"),
    ("--container", "container", "NAME", "Docker container running PostgreSQL; empty for a direct connection"),
    ("--schemas", "schemas", "LIST", "Comma-separated schemas"),
    ("--min-idx-scans", "min_idx_scans", "N", "Minimum idx_scan of an index"),
    ("--min-table-size-mb", "min_table_size_mb", "MB", "Minimum total table size"),
    ("--min-index-size-mb", "min_index_size_mb", "MB", "Minimum index size"),
    ("--scope", "scope", "index|table", "Rebuild individual indexes or whole tables"),
    ("--concurrently", "concurrently", "true|false", "Use REINDEX ... CONCURRENTLY (PostgreSQL >= 12)"),
    ("--dry-run", "dry_run", "true|false", "Only print the statements that would run"),
    ("--log-file", "log_file", "PATH", "Log file, appended to"),
]


class ReindexArgumentParser(argparse.ArgumentParser):
    """argparse exits with 2 on usage errors, which is reserved for precondition failures."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(EXIT_USAGE, f"{self.prog}: error: {message}\n")


def build_parser(environ: Mapping[str, str]) -> argparse.ArgumentParser:
    parser = ReindexArgumentParser(
        prog="pgmaint-reindex",
        description="Rebuild frequently used, non-tiny PostgreSQL indexes or their tables.",
        epilog="Every option falls back to an environment variable, then to the built-in default.",
        allow_abbrev=False,
    )
    for flag, name, metavar, help_text in FLAGS:
        env_name, default = REINDEX_OPTIONS[name]
        if name == "password":
            shown = f"env {env_name}"
        else:
            shown = f"{environ.get(env_name, default) or '(empty)'}, env {env_name}"
        parser.add_argument(flag, dest=name, metavar=metavar, default=None, help=f"{help_text} (default: {shown})")
    return parser


def main(
    argv: Optional[List[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
    client_factory: Callable[..., CatalogClient] = create_catalog_client,
    out: Optional[TextIO] = None,
) -> int:
    from pgmaint.reindex.executor import ReindexRunner

    if environ is None:
        dotenv.load_dotenv(dotenv.find_dotenv(usecwd=True))
        environ = dict(os.environ)

    parser = build_parser(environ)
    args = parser.parse_args(argv)

    try:
        settings = resolve_reindex_settings(environ, vars(args))
    except ConfigurationError as e:
        setup_logging(None)
        logger.error(e.message)
        parser.print_usage(sys.stderr)
        return e.exit_code

    try:
        setup_logging(settings.log_file)
    except OSError as e:
        setup_logging(None)
        logger.error(f"Cannot open log file {settings.log_file}: {e}")
        return EXIT_USAGE

    if args.password is not None:
        logger.warning("--password is visible to other local users; prefer PGPASSWORD")

    try:
        with client_factory(settings.connection) as client:
            ReindexRunner(settings, client, out=out).run()
    except PgMaintError as e:
        logger.error(e.message)
        return e.exit_code
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())

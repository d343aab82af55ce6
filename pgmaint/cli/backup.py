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
Daily PostgreSQL backup for the document stack, meant for cron.

Usage:
    pgmaint-backup --container paperless-db-1 --backup-dir /volume1/NetBackup/paperless
"""

import argparse
import logging
import os
import sys
from typing import List, Mapping, Optional

import dotenv

from pgmaint.backup import run_backup
from pgmaint.config import resolve_backup_settings
from pgmaint.exceptions import EXIT_OK, EXIT_USAGE, ConfigurationError, PgMaintError
from pgmaint.log import setup_logging

logger = logging.getLogger("pgmaint.cli.backup")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pgmaint-backup",
        description="Dump the database to <backup-dir>/YYYYMMDD.sql.gz and remove old dumps.",
        allow_abbrev=False,
    )
    parser.add_argument("--container", help="Docker container running PostgreSQL (env POSTGRES_CONTAINER)")
    parser.add_argument("--host", help="Server host when no container is used (env PGHOST)")
    parser.add_argument("--port", help="Server port when no container is used (env PGPORT)")
    parser.add_argument("--user", help="Database role (env PGUSER)")
    parser.add_argument("--db", help="Database to dump (env PGDATABASE)")
    parser.add_argument("--password", help="Password (prefer env PGPASSWORD)")
    parser.add_argument("--backup-dir", dest="backup_dir", help="Target directory (env BACKUP_DIR)")
    parser.add_argument(
        "--retention-days", dest="retention_days", help="Remove dumps older than this (env BACKUP_RETENTION_DAYS)"
    )
    parser.add_argument("--log-file", dest="log_file", help="Also append log lines here (env BACKUP_LOG_FILE)")
    return parser


def main(argv: Optional[List[str]] = None, environ: Optional[Mapping[str, str]] = None) -> int:
    if environ is None:
        dotenv.load_dotenv(dotenv.find_dotenv(usecwd=True))
        environ = dict(os.environ)

    args = build_parser().parse_args(argv)

    try:
        settings = resolve_backup_settings(environ, vars(args))
    except ConfigurationError as e:
        setup_logging(None)
        logger.error(e.message)
        return e.exit_code

    try:
        setup_logging(settings.log_file)
    except OSError as e:
        setup_logging(None)
        logger.error(f"Cannot open log file {settings.log_file}: {e}")
        return EXIT_USAGE

    try:
        run_backup(settings)
    except PgMaintError as e:
        logger.error(f"Backup failed. {e.message}")
        return e.exit_code
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())

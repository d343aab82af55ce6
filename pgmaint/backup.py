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
Daily gzip dump of the application database with age-based rotation.

The dump is streamed into ``.<YYYYMMDD>.sql.gz.part`` and renamed to
``<YYYYMMDD>.sql.gz`` only when pg_dump succeeded, so a visible backup file
is always complete. Rotation runs only after a successful dump.
"""

import gzip
import logging
import os
import shutil
import subprocess
import tempfile
import time
from datetime import date
from pathlib import Path
from typing import Callable, Dict, List, Optional

from pgmaint.config import BackupSettings, ConnectionParams
from pgmaint.exceptions import BackupError

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".sql.gz"
SECONDS_PER_DAY = 86400


def backup_filename(day: date) -> str:
    return f"{day:%Y%m%d}{BACKUP_SUFFIX}"


def build_dump_command(params: ConnectionParams) -> List[str]:
    """pg_dump inside the container, or against host/port when no container is set."""
    if params.proxied:
        # No -t: a TTY would corrupt the binary stream under cron
        return ["docker", "exec", "-e", "PGPASSWORD", params.container, "pg_dump", "-U", params.user, "-d", params.dbname]
    return ["pg_dump", "-h", params.host, "-p", str(params.port), "-U", params.user, "-d", params.dbname]


def _dump_env(params: ConnectionParams) -> Dict[str, str]:
    env = dict(os.environ)
    password = params.password.get_secret_value()
    if password:
        env["PGPASSWORD"] = password
    return env


def write_dump(
    params: ConnectionParams, target: Path, popen: Callable[..., subprocess.Popen] = subprocess.Popen
) -> None:
    """Stream pg_dump output through gzip into ``target``."""
    cmd = build_dump_command(params)
    with tempfile.TemporaryFile() as stderr:
        try:
            proc = popen(cmd, stdout=subprocess.PIPE, stderr=stderr, env=_dump_env(params))
        except OSError as e:
            raise BackupError(f"Failed to run {cmd[0]}: {e}") from e
        with proc:
            with gzip.open(target, "wb") as gz:
                shutil.copyfileobj(proc.stdout, gz)
        if proc.returncode != 0:
            stderr.seek(0)
            message = stderr.read().decode("utf-8", errors="replace").strip()
            raise BackupError(f"pg_dump exited with {proc.returncode}: {message or 'no output'}")


def rotate_backups(backup_dir: Path, retention_days: int, now: Optional[float] = None) -> List[Path]:
    """
    Delete ``*.sql.gz`` files whose age in whole days exceeds ``retention_days``
    (the same rule as ``find -mtime +N``). Returns the removed paths.

    Raises:
        BackupError: an old backup could not be inspected or removed
    """
    now = time.time() if now is None else now
    removed = []
    for path in sorted(backup_dir.glob(f"*{BACKUP_SUFFIX}")):
        try:
            if not path.is_file():
                continue
            age_days = int((now - path.stat().st_mtime) // SECONDS_PER_DAY)
            if age_days > retention_days:
                path.unlink()
                logger.info(f"Removed old backup: {path}")
                removed.append(path)
        except OSError as e:
            raise BackupError(f"Failed to rotate {path}: {e}") from e
    return removed


def run_backup(
    settings: BackupSettings,
    popen: Callable[..., subprocess.Popen] = subprocess.Popen,
    today: Optional[date] = None,
    now: Optional[float] = None,
) -> Path:
    """
    Create today's dump and rotate old ones.

    Returns:
        Path of the new backup file

    Raises:
        BackupError: the dump failed; no partial file is left behind
    """
    backup_dir = settings.backup_dir
    filename = backup_filename(today or date.today())
    final_path = backup_dir / filename
    tmp_path = backup_dir / f".{filename}.part"

    try:
        backup_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise BackupError(f"Cannot create backup directory {backup_dir}: {e}") from e

    logger.info(f"Creating backup: {final_path}")
    try:
        write_dump(settings.connection, tmp_path, popen=popen)
        os.replace(tmp_path, final_path)
    except BackupError:
        tmp_path.unlink(missing_ok=True)
        raise
    except OSError as e:
        tmp_path.unlink(missing_ok=True)
        raise BackupError(f"Failed to write backup {final_path}: {e}") from e
    logger.info(f"Backup saved: {final_path}")

    logger.info(f"Removing backups older than {settings.retention_days} days...")
    removed = rotate_backups(backup_dir, settings.retention_days, now=now)
    logger.info(f"Backup and rotation finished ({len(removed)} old backup(s) removed).")
    return final_path

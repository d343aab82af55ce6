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
Reindex run: probe, preview, then either report or execute.

A run walks Configuring -> Probing -> Previewing -> (DryRunReporting |
Executing) -> Done. Any raised PgMaintError leaves the runner in Failed.
Statements are executed one at a time; a failure stops the run and the
structures rebuilt so far stay rebuilt. There is no statement timeout, so a
blocked REINDEX holds the run until the process is terminated.
"""

import logging
import sys
import time
from dataclasses import dataclass, field
from typing import List, Optional, TextIO

from pgmaint.config import ReindexSettings
from pgmaint.db.connection import CatalogClient
from pgmaint.exceptions import CommandExecutionError, DatabaseClientError, PgMaintError
from pgmaint.reindex.capability import check_concurrency_support, probe
from pgmaint.reindex.models import CandidateRecord, ReindexCommand, RunState
from pgmaint.reindex.selector import render_preview, select_candidates
from pgmaint.reindex.synthesizer import synthesize

logger = logging.getLogger(__name__)


@dataclass
class RunReport:
    server_version: int = 0
    candidates: List[CandidateRecord] = field(default_factory=list)
    commands: List[ReindexCommand] = field(default_factory=list)
    executed: List[ReindexCommand] = field(default_factory=list)
    dry_run: bool = False


class ReindexRunner:
    """Drives a single reindex run against one catalog client."""

    def __init__(self, settings: ReindexSettings, client: CatalogClient, out: Optional[TextIO] = None):
        self.settings = settings
        self.client = client
        self.out = out or sys.stdout
        self.state = RunState.CONFIGURING
        self.report = RunReport(dry_run=settings.dry_run)

    def _transition(self, state: RunState) -> None:
        logger.debug(f"Run state {self.state.value} -> {state.value}")
        self.state = state

    def run(self) -> RunReport:
        try:
            self._log_settings()
            self._probe()
            self._preview()
            if self.settings.dry_run:
                self._report_dry_run()
            else:
                self._execute()
        except PgMaintError:
            self._transition(RunState.FAILED)
            raise
        self._transition(RunState.DONE)
        return self.report

    def _log_settings(self) -> None:
        conn = self.settings.connection
        filters = self.settings.filters
        logger.info(
            f"Starting filtered reindex: host={conn.host} port={conn.port} db={conn.dbname} user={conn.user}"
            + (f" container={conn.container}" if conn.container else "")
        )
        logger.info(
            f"schemas={','.join(filters.schemas)} scope={self.settings.scope.value} "
            f"concurrently={str(self.settings.concurrently).lower()} dry_run={str(self.settings.dry_run).lower()}"
        )
        logger.info(
            f"filters: min_idx_scans={filters.min_idx_scans} "
            f"min_table_bytes={filters.min_table_bytes} min_index_bytes={filters.min_index_bytes}"
        )

    def _probe(self) -> None:
        self._transition(RunState.PROBING)
        self.report.server_version = probe(self.client)
        check_concurrency_support(self.report.server_version, self.settings.concurrently)

    def _preview(self) -> None:
        self._transition(RunState.PREVIEWING)
        candidates = select_candidates(self.client, self.settings.filters)
        logger.info("Preview of candidates (schema, table, index, idx_scan, table_size, index_size):")
        for line in render_preview(candidates):
            logger.info(line)
        if not candidates:
            logger.info("No candidates matched the filters; nothing to do.")

    def _plan(self) -> List[ReindexCommand]:
        # Re-read live statistics so the commands reflect the current catalog
        self.report.candidates = select_candidates(self.client, self.settings.filters)
        self.report.commands = synthesize(
            self.report.candidates, self.settings.scope, self.settings.concurrently
        )
        return self.report.commands

    def _report_dry_run(self) -> None:
        self._transition(RunState.DRY_RUN_REPORTING)
        commands = self._plan()
        logger.info("Dry-run enabled: showing generated REINDEX statements only.")
        for command in commands:
            logger.info(f"{command.text};")
            self.out.write(f"{command.text};\n")
        self.out.flush()
        logger.info(f"Done (no changes applied). {len(commands)} statement(s) generated.")

    def _execute(self) -> None:
        self._transition(RunState.EXECUTING)
        commands = self._plan()
        if not commands:
            logger.info("No REINDEX statements to execute.")
            return
        logger.info(f"Executing {len(commands)} REINDEX statement(s)...")
        for position, command in enumerate(commands, start=1):
            logger.info(f"[{position}/{len(commands)}] {command.text};")
            started = time.monotonic()
            try:
                self.client.execute(command)
            except DatabaseClientError as e:
                logger.error(f"[{position}/{len(commands)}] FAILED {command.text}: {e.message}")
                raise CommandExecutionError(
                    f"REINDEX failed after {len(self.report.executed)} of {len(commands)} statement(s): {e.message}",
                    statement=command.text,
                ) from e
            self.report.executed.append(command)
            logger.info(f"[{position}/{len(commands)}] OK ({time.monotonic() - started:.1f}s)")
        logger.info("Reindex complete.")

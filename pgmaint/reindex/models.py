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

from dataclasses import dataclass
from enum import Enum

from psycopg import sql


@dataclass(frozen=True)
class CandidateRecord:
    """Usage and size statistics of one index and its owning table"""

    schemaname: str
    tablename: str
    indexname: str
    idx_scan: int
    table_bytes: int
    index_bytes: int


class RunState(str, Enum):
    """States of a single reindex run"""

    CONFIGURING = "configuring"
    PROBING = "probing"
    PREVIEWING = "previewing"
    DRY_RUN_REPORTING = "dry_run_reporting"
    EXECUTING = "executing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class ReindexCommand:
    """A rebuild statement with its identifiers already quoted"""

    target: str  # "INDEX" or "TABLE"
    schemaname: str
    name: str
    statement: sql.Composed

    @property
    def text(self) -> str:
        return self.statement.as_string(None)

    def __str__(self) -> str:
        return self.text

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

from typing import Iterable, List, Sequence, Tuple

from psycopg import sql

from pgmaint.config import ReindexScope
from pgmaint.reindex.models import CandidateRecord, ReindexCommand


def build_command(target: str, schemaname: str, name: str, concurrently: bool) -> ReindexCommand:
    """REINDEX {INDEX|TABLE} [CONCURRENTLY] "schema"."name" with quoted identifiers."""
    keyword = f"REINDEX {target} CONCURRENTLY" if concurrently else f"REINDEX {target}"
    statement = sql.SQL("{} {}").format(sql.SQL(keyword), sql.Identifier(schemaname, name))
    return ReindexCommand(target=target, schemaname=schemaname, name=name, statement=statement)


def distinct_tables(candidates: Iterable[CandidateRecord]) -> List[Tuple[str, str]]:
    """Distinct (schema, table) pairs ordered by schema, then table."""
    return sorted({(c.schemaname, c.tablename) for c in candidates})


def synthesize(
    candidates: Sequence[CandidateRecord], scope: ReindexScope, concurrently: bool
) -> List[ReindexCommand]:
    """
    Turn candidates into rebuild commands.

    Index scope keeps the selector's order, one command per index. Table scope
    collapses candidates to their tables, which are ordered by name because
    usage no longer ranks a table with several hot indexes.
    """
    if scope == ReindexScope.INDEX:
        return [build_command("INDEX", c.schemaname, c.indexname, concurrently) for c in candidates]
    if scope == ReindexScope.TABLE:
        return [
            build_command("TABLE", schemaname, tablename, concurrently)
            for schemaname, tablename in distinct_tables(candidates)
        ]
    raise ValueError(f"Unsupported reindex scope: {scope}")

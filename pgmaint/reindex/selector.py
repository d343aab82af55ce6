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

import logging
from typing import Iterable, List

from pgmaint.config import ReindexFilters
from pgmaint.db.connection import CatalogClient
from pgmaint.exceptions import CatalogQueryError, DatabaseClientError
from pgmaint.reindex.models import CandidateRecord

logger = logging.getLogger(__name__)

PREVIEW_COLUMNS = ("schemaname", "tablename", "indexname", "idx_scan", "table_size", "index_size")

# (name, limit, half-rounded, bits) mirroring pg_size_pretty
_SIZE_UNITS = (
    ("bytes", 10 * 1024, False, 0),
    ("kB", 20 * 1024 - 1, True, 10),
    ("MB", 20 * 1024 - 1, True, 20),
    ("GB", 20 * 1024 - 1, True, 30),
    ("TB", 20 * 1024 - 1, True, 40),
    ("PB", 20 * 1024 - 1, True, 50),
)


def matches(record: CandidateRecord, filters: ReindexFilters) -> bool:
    """All thresholds are inclusive lower bounds."""
    return (
        record.schemaname in filters.schemas
        and record.idx_scan >= filters.min_idx_scans
        and record.table_bytes >= filters.min_table_bytes
        and record.index_bytes >= filters.min_index_bytes
    )


def order_candidates(records: Iterable[CandidateRecord]) -> List[CandidateRecord]:
    """Hottest first, then largest index; names only break exact ties."""
    return sorted(
        records,
        key=lambda r: (-r.idx_scan, -r.index_bytes, r.schemaname, r.tablename, r.indexname),
    )


def filter_candidates(records: Iterable[CandidateRecord], filters: ReindexFilters) -> List[CandidateRecord]:
    return order_candidates(r for r in records if matches(r, filters))


def select_candidates(client: CatalogClient, filters: ReindexFilters) -> List[CandidateRecord]:
    """
    Read index statistics for the allowed schemas and keep the ones passing
    every threshold. Read-only, so it is safe to call repeatedly.

    Raises:
        CatalogQueryError: the statistics could not be read
    """
    try:
        records = client.fetch_index_stats(filters.schemas)
    except DatabaseClientError as e:
        raise CatalogQueryError(f"Candidate query failed: {e.message}") from e
    candidates = filter_candidates(records, filters)
    logger.debug(f"{len(candidates)} of {len(records)} indexes passed the filters")
    return candidates


def pretty_size(size: int) -> str:
    """Format a byte count the way PostgreSQL's pg_size_pretty does."""
    for unit, next_unit in zip(_SIZE_UNITS, _SIZE_UNITS[1:]):
        name, limit, half_rounded, bits = unit
        if abs(size) < limit:
            break
        _, _, next_half_rounded, next_bits = next_unit
        shift = next_bits - bits - int(next_half_rounded) + int(half_rounded)
        size = size >> shift if size >= 0 else -((-size) >> shift)
    else:
        name, _, half_rounded, _ = _SIZE_UNITS[-1]
    if half_rounded:
        size = (size + 1) // 2 if size >= 0 else -((-size + 1) // 2)
    return f"{size} {name}"


def render_preview(candidates: List[CandidateRecord]) -> List[str]:
    """Tab-separated preview table with header and row-count footer."""
    lines = ["\t".join(PREVIEW_COLUMNS)]
    for c in candidates:
        lines.append(
            "\t".join(
                [
                    c.schemaname,
                    c.tablename,
                    c.indexname,
                    str(c.idx_scan),
                    pretty_size(c.table_bytes),
                    pretty_size(c.index_bytes),
                ]
            )
        )
    noun = "row" if len(candidates) == 1 else "rows"
    lines.append(f"({len(candidates)} {noun})")
    return lines

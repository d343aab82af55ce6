"""
Unit tests for candidate selection and the preview table.
"""

from dataclasses import replace

import pytest

from pgmaint.config import ReindexFilters
from pgmaint.exceptions import CatalogQueryError
from pgmaint.reindex.selector import (
    filter_candidates,
    matches,
    order_candidates,
    pretty_size,
    render_preview,
    select_candidates,
)

MB = 1024 * 1024


class TestCandidateFiltering:
    """Thresholds, schema allow-list and ordering."""

    def test_select_candidates_default_filters(self, fake_client, filters):
        candidates = select_candidates(fake_client, filters)
        assert [c.indexname for c in candidates] == [
            "documents_tag_pkey",
            "documents_document_pkey",
            "documents_document_checksum",
        ]
        assert fake_client.stats_calls == [("public",)]

    def test_scan_threshold_is_inclusive(self, make_record, filters):
        at_threshold = make_record("public", "t", "at", filters.min_idx_scans)
        below = make_record("public", "t", "below", filters.min_idx_scans - 1)
        assert matches(at_threshold, filters)
        assert not matches(below, filters)

    def test_size_thresholds_are_inclusive(self, make_record):
        filters = ReindexFilters(schemas=("public",), min_idx_scans=0, min_table_bytes=100 * MB, min_index_bytes=50 * MB)
        exact = make_record("public", "t", "i", 1, table_mb=100, index_mb=50)
        small_table = replace(exact, table_bytes=100 * MB - 1)
        small_index = replace(exact, index_bytes=50 * MB - 1)
        assert matches(exact, filters)
        assert not matches(small_table, filters)
        assert not matches(small_index, filters)

    def test_schema_allow_list(self, snapshot):
        filters = ReindexFilters(schemas=("audit",), min_idx_scans=0, min_table_bytes=0, min_index_bytes=0)
        result = filter_candidates(snapshot, filters)
        assert [c.schemaname for c in result] == ["audit"]

    def test_ordering_scan_desc_then_index_size_desc(self, make_record):
        records = [
            make_record("public", "a", "small_hot", 100, index_mb=10),
            make_record("public", "b", "big_hot", 100, index_mb=90),
            make_record("public", "c", "hottest", 500, index_mb=1),
            make_record("public", "d", "cold", 5, index_mb=500),
        ]
        ordered = order_candidates(records)
        assert [r.indexname for r in ordered] == ["hottest", "big_hot", "small_hot", "cold"]

    def test_ordering_is_deterministic(self, snapshot, filters):
        first = filter_candidates(snapshot, filters)
        second = filter_candidates(list(reversed(snapshot)), filters)
        assert first == second

    def test_no_candidates_is_empty_list(self, fake_client):
        strict = ReindexFilters(schemas=("public",), min_idx_scans=10**12, min_table_bytes=0, min_index_bytes=0)
        assert select_candidates(fake_client, strict) == []

    def test_query_failure_raises_catalog_error(self, client_factory, filters):
        client = client_factory(stats_error=True)
        with pytest.raises(CatalogQueryError, match="permission denied"):
            select_candidates(client, filters)


class TestPreview:
    """Rendering of the human-readable preview."""

    @pytest.mark.parametrize(
        "size, expected",
        [
            (0, "0 bytes"),
            (10239, "10239 bytes"),
            (10240, "10 kB"),
            (1536 * 1024, "1536 kB"),
            (100 * MB, "100 MB"),
            (50 * MB, "50 MB"),
            (25 * 1024 * MB, "25 GB"),
            (30 * 1024**3 * MB, "30 PB"),
            (20000 * 1024**3 * MB, "20000 PB"),
        ],
    )
    def test_pretty_size_matches_pg_size_pretty(self, size, expected):
        assert pretty_size(size) == expected

    def test_render_preview(self, make_record):
        lines = render_preview([make_record("public", "documents_tag", "documents_tag_pkey", 500000, 150, 55)])
        assert lines[0] == "schemaname\ttablename\tindexname\tidx_scan\ttable_size\tindex_size"
        assert lines[1] == "public\tdocuments_tag\tdocuments_tag_pkey\t500000\t150 MB\t55 MB"
        assert lines[-1] == "(1 row)"

    def test_render_empty_preview(self):
        assert render_preview([])[-1] == "(0 rows)"

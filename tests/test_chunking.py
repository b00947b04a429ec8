"""Tests for part planning."""
import pytest

from multipart_uploader.errors import ValidationError
from multipart_uploader.models import MB
from multipart_uploader.services.chunking import (
    count_parts,
    part_range,
    plan_parts,
    validate_plan,
)


class TestPlanParts:
    def test_ranges_tile_file(self):
        parts = plan_parts(10_000, 3_000)

        assert [p.part_number for p in parts] == [1, 2, 3, 4]
        assert parts[0].start == 0
        assert parts[-1].end == 10_000
        for prev, nxt in zip(parts, parts[1:]):
            assert prev.end == nxt.start
        assert sum(p.length for p in parts) == 10_000

    def test_last_part_is_remainder(self):
        parts = plan_parts(25 * MB, 10 * MB)
        assert [p.length for p in parts] == [10 * MB, 10 * MB, 5 * MB]

    def test_exact_multiple_has_no_empty_tail(self):
        parts = plan_parts(4096, 1024)
        assert len(parts) == 4
        assert all(p.length == 1024 for p in parts)

    def test_zero_byte_file_has_one_empty_part(self):
        parts = plan_parts(0, 8 * MB)
        assert len(parts) == 1
        assert (parts[0].start, parts[0].end) == (0, 0)

    def test_negative_size_rejected(self):
        with pytest.raises(ValidationError):
            plan_parts(-1, 1024)


class TestCountParts:
    @pytest.mark.parametrize(
        "total,part,expected",
        [(1, 1024, 1), (1024, 1024, 1), (1025, 1024, 2), (0, 1024, 1)],
    )
    def test_count(self, total, part, expected):
        assert count_parts(total, part) == expected

    def test_non_positive_part_size(self):
        with pytest.raises(ValidationError, match="part_size"):
            count_parts(100, 0)


class TestPartRange:
    def test_single_range(self):
        r = part_range(2, 2500, 1000)
        assert (r.start, r.end, r.length) == (1000, 2000, 1000)

    def test_out_of_range(self):
        with pytest.raises(ValueError):
            part_range(4, 2500, 1000)
        with pytest.raises(ValueError):
            part_range(0, 2500, 1000)


class TestValidatePlan:
    def test_returns_part_count(self):
        assert validate_plan(25 * MB, 10 * MB, min_part_size=5 * MB, max_parts=10_000) == 3

    def test_part_size_below_minimum(self):
        with pytest.raises(ValidationError, match="below the protocol minimum"):
            validate_plan(10 * MB, 1 * MB, min_part_size=5 * MB)

    def test_too_many_parts(self):
        with pytest.raises(ValidationError, match="exceeds the protocol maximum"):
            validate_plan(10_001, 1, max_parts=10_000)

    def test_file_too_large(self):
        with pytest.raises(ValidationError, match="File too large"):
            validate_plan(11, 5, max_file_size=10)

    def test_validation_error_kind(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_plan(-5, 1024)
        assert exc_info.value.kind == "validation"
        assert exc_info.value.retryable is False

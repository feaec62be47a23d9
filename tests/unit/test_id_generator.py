"""Tests for cl_common.id_generator and cl_common.datetime_utils."""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from src.cl_common.datetime_utils import ensure_utc, utc_now
from src.cl_common.id_generator import SnowflakeIdGenerator, generate_id


class TestSnowflakeIdGenerator:
    def test_returns_str(self) -> None:
        assert isinstance(SnowflakeIdGenerator(worker_id=1).next_id(), str)

    def test_unique_ids(self) -> None:
        gen = SnowflakeIdGenerator(worker_id=1)
        ids = {gen.next_id() for _ in range(1000)}
        assert len(ids) == 1000

    def test_monotonically_increasing(self) -> None:
        gen = SnowflakeIdGenerator(worker_id=1)
        prev = gen.next_int()
        for _ in range(100):
            current = gen.next_int()
            assert current > prev
            prev = current

    def test_prefix(self) -> None:
        assert generate_id("cyc_").startswith("cyc_")

    def test_worker_id_out_of_range(self) -> None:
        with pytest.raises(ValueError, match="worker_id"):
            SnowflakeIdGenerator(worker_id=1024)


class TestUtcHelpers:
    def test_utc_now_is_aware(self) -> None:
        now = utc_now()
        assert isinstance(now, datetime)
        assert now.tzinfo == UTC

    def test_naive_is_treated_as_utc(self) -> None:
        assert ensure_utc(datetime(2026, 1, 1, 12)).tzinfo == UTC

    def test_aware_is_converted(self) -> None:
        plus_two = timezone(timedelta(hours=2))
        converted = ensure_utc(datetime(2026, 1, 1, 12, tzinfo=plus_two))
        assert converted == datetime(2026, 1, 1, 10, tzinfo=UTC)

"""
tests/test_entitlement.py — Pure entitlement rules
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from veebee.constants import SECONDS_PER_DAY
from veebee.database.models import SourceType
from veebee.engine.entitlement import (
    PremiumSource,
    batched,
    compute_extension,
    has_lapsed,
    is_active,
    primary_source,
    remaining_seconds,
    sort_sources,
    utc,
)

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)


def _source(source_type: str) -> PremiumSource:
    return PremiumSource(source_type, None, "SYSTEM", NOW, None, True)


# ===========================================================================
# Activity
# ===========================================================================
class TestActivity:
    def test_permanent_is_active_without_expiry(self):
        assert is_active(None, True, NOW)

    def test_future_expiry_is_active(self):
        assert is_active(NOW + timedelta(seconds=1), False, NOW)

    def test_expiry_at_now_is_not_active(self):
        assert not is_active(NOW, False, NOW)
        assert has_lapsed(NOW, False, NOW)

    def test_inert_row_is_neither_active_nor_lapsed(self):
        assert not is_active(None, False, NOW)
        assert not has_lapsed(None, False, NOW)

    def test_naive_datetimes_are_treated_as_utc(self):
        naive = datetime(2025, 1, 2, 12, 0)
        assert utc(naive).tzinfo is UTC
        assert is_active(naive, False, NOW)

    def test_remaining_seconds_never_negative(self):
        assert remaining_seconds(NOW - timedelta(days=1), NOW) == 0
        assert remaining_seconds(NOW + timedelta(hours=1), NOW) == 3600
        assert remaining_seconds(None, NOW) == 0


# ===========================================================================
# Extension arithmetic
# ===========================================================================
class TestComputeExtension:
    def test_extends_from_future_expiry(self):
        ext = compute_extension(
            current_expiry=NOW + timedelta(days=5), is_permanent=False,
            total_time_seconds=5 * SECONDS_PER_DAY, times_extended=1,
            duration_days=10, now=NOW,
        )
        assert ext.expires_at == NOW + timedelta(days=15)
        assert ext.total_time_seconds == 15 * SECONDS_PER_DAY
        assert ext.times_extended == 2

    def test_lapsed_grant_extends_from_now(self):
        ext = compute_extension(
            current_expiry=NOW - timedelta(days=3), is_permanent=False,
            total_time_seconds=0, times_extended=0, duration_days=7, now=NOW,
        )
        assert ext.expires_at == NOW + timedelta(days=7)

    def test_missing_expiry_extends_from_now(self):
        ext = compute_extension(
            current_expiry=None, is_permanent=False,
            total_time_seconds=0, times_extended=0, duration_days=1, now=NOW,
        )
        assert ext.expires_at == NOW + timedelta(days=1)

    def test_permanent_keeps_no_expiry_but_counts(self):
        ext = compute_extension(
            current_expiry=None, is_permanent=True,
            total_time_seconds=SECONDS_PER_DAY, times_extended=3,
            duration_days=2, now=NOW,
        )
        assert ext.expires_at is None
        assert ext.total_time_seconds == 3 * SECONDS_PER_DAY
        assert ext.times_extended == 4

    @pytest.mark.parametrize("days", [0, -5])
    def test_non_positive_duration_rejected(self, days):
        with pytest.raises(ValueError):
            compute_extension(
                current_expiry=None, is_permanent=False,
                total_time_seconds=0, times_extended=0, duration_days=days, now=NOW,
            )


# ===========================================================================
# Source precedence
# ===========================================================================
class TestSourcePrecedence:
    def test_role_beats_server_beats_manual(self):
        ordered = sort_sources([
            _source(SourceType.MANUAL),
            _source(SourceType.SERVER),
            _source(SourceType.ROLE),
        ])
        assert [s.source_type for s in ordered] == ["role", "server", "manual"]

    def test_primary_source(self):
        assert primary_source([]) is None
        primary = primary_source([_source(SourceType.MANUAL), _source(SourceType.SERVER)])
        assert primary.source_type == SourceType.SERVER


# ===========================================================================
# Batching
# ===========================================================================
class TestBatched:
    def test_splits_with_short_tail(self):
        assert list(batched(list(range(5)), 2)) == [[0, 1], [2, 3], [4]]

    def test_empty(self):
        assert list(batched([], 100)) == []

    def test_rejects_zero_size(self):
        with pytest.raises(ValueError):
            list(batched([1], 0))

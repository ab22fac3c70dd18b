"""
veebee.engine.entitlement — Pure Entitlement Rules
===================================================

No Discord I/O, no DB I/O inside this module.  The services layer reads rows
and hands plain values in; everything here is deterministic given ``now``.

Rules:
  - A grant is active when it is permanent, or when it carries an expiry in
    the future.  No expiry and not permanent means inert.
  - When a user holds several sources at once, the primary one is chosen by
    fixed precedence: role > server > manual.
  - Extending a grant adds the duration forward from whichever is later,
    the current expiry or ``now``.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TypeVar

from veebee.constants import SECONDS_PER_DAY
from veebee.database.models import SourceType

T = TypeVar("T")

SOURCE_PRECEDENCE: dict[str, int] = {
    SourceType.ROLE: 0,
    SourceType.SERVER: 1,
    SourceType.MANUAL: 2,
}


def utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops the offset on read)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Activity
# ---------------------------------------------------------------------------
def is_active(
    expires_at: datetime | None,
    is_permanent: bool,
    now: datetime | None = None,
) -> bool:
    """Return whether a grant with these fields holds at *now*."""
    if is_permanent:
        return True
    if expires_at is None:
        return False
    return utc(expires_at) > (now or utcnow())


def has_lapsed(
    expires_at: datetime | None,
    is_permanent: bool,
    now: datetime | None = None,
) -> bool:
    """True for a time-boxed grant whose expiry is behind *now*.

    Inert rows with no expiry are not "lapsed"; they never started.
    """
    if is_permanent or expires_at is None:
        return False
    return utc(expires_at) <= (now or utcnow())


def remaining_seconds(expires_at: datetime | None, now: datetime | None = None) -> int:
    if expires_at is None:
        return 0
    return max(int((utc(expires_at) - (now or utcnow())).total_seconds()), 0)


# ---------------------------------------------------------------------------
# Extension arithmetic
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class Extension:
    """Field values produced by extending an existing grant."""

    expires_at: datetime | None
    total_time_seconds: int
    times_extended: int


def compute_extension(
    *,
    current_expiry: datetime | None,
    is_permanent: bool,
    total_time_seconds: int,
    times_extended: int,
    duration_days: int,
    now: datetime | None = None,
) -> Extension:
    """Apply *duration_days* to a grant.

    Permanent grants keep ``expires_at = None`` while the counters still
    advance, so ``is_permanent`` always implies no expiry.
    """
    if duration_days <= 0:
        raise ValueError("duration_days must be positive")
    now = now or utcnow()
    delta = timedelta(days=duration_days)

    if is_permanent:
        new_expiry = None
    else:
        base = utc(current_expiry)
        new_expiry = max(base, now) + delta if base is not None else now + delta

    return Extension(
        expires_at=new_expiry,
        total_time_seconds=(total_time_seconds or 0) + duration_days * SECONDS_PER_DAY,
        times_extended=(times_extended or 0) + 1,
    )


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class PremiumSource:
    """One reason a user is premium right now."""

    source_type: str
    source_id: str | None
    granted_by: str
    granted_at: datetime | None
    expires_at: datetime | None
    is_permanent: bool

    @property
    def precedence(self) -> int:
        return SOURCE_PRECEDENCE.get(self.source_type, len(SOURCE_PRECEDENCE))


def sort_sources(sources: Iterable[PremiumSource]) -> list[PremiumSource]:
    """Order *sources* role first, then server, then manual (stable)."""
    return sorted(sources, key=lambda s: s.precedence)


def primary_source(sources: Iterable[PremiumSource]) -> PremiumSource | None:
    ordered = sort_sources(sources)
    return ordered[0] if ordered else None


# ---------------------------------------------------------------------------
# Batching
# ---------------------------------------------------------------------------
def batched(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive slices of *items* of at most *size* elements."""
    if size <= 0:
        raise ValueError("batch size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])

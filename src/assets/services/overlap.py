"""Interval overlap queries over reservation edges.

Windows are half-open: ``[starts_at, ends_at)``. Two windows overlap iff
``a.starts_at < b.ends_at and b.starts_at < a.ends_at``, so a booking
ending at 10:00 and another starting at 10:00 do not collide.
"""

from dataclasses import dataclass
from datetime import datetime
from datetime import timezone as dt_timezone

from django.core.exceptions import ValidationError
from django.utils import timezone

from ..models import BookingAsset


@dataclass(frozen=True)
class Window:
    """A half-open booking window."""

    starts_at: datetime
    ends_at: datetime

    def __post_init__(self):
        if self.starts_at is None or self.ends_at is None:
            raise ValidationError("A booking window needs a start and an end.")
        if timezone.is_naive(self.starts_at) or timezone.is_naive(
            self.ends_at
        ):
            raise ValidationError("Booking times must be timezone-aware.")
        if self.starts_at >= self.ends_at:
            raise ValidationError(
                f"Booking must start before it ends "
                f"({self.starts_at:%Y-%m-%d %H:%M} >= "
                f"{self.ends_at:%Y-%m-%d %H:%M})."
            )

    @classmethod
    def of(cls, booking):
        return cls(booking.starts_at, booking.ends_at)

    def overlaps(self, other) -> bool:
        return (
            self.starts_at < other.ends_at and other.starts_at < self.ends_at
        )

    def describe(self) -> str:
        start = timezone.localtime(self.starts_at, dt_timezone.utc)
        end = timezone.localtime(self.ends_at, dt_timezone.utc)
        return f"{start:%Y-%m-%d %H:%M} to {end:%Y-%m-%d %H:%M} UTC"


def active_edges_overlapping(asset_ids, window, exclude_booking_id=None):
    """Active reservation edges on ``asset_ids`` intersecting ``window``.

    Edges are not narrowed by organisation. Edges of
    ``exclude_booking_id`` are left out so a booking being edited does
    not collide with its own previous window.
    """
    queryset = BookingAsset.objects.filter(
        asset_id__in=list(asset_ids),
        is_active=True,
        starts_at__lt=window.ends_at,
        ends_at__gt=window.starts_at,
    )
    if exclude_booking_id is not None:
        queryset = queryset.exclude(booking_id=exclude_booking_id)
    return queryset


def find_overlapping_pairs(organization_id=None):
    """Scan stored active edges for pairs violating the no-overlap rule.

    Returns a list of ``(earlier_edge, later_edge)`` tuples; empty when
    the invariant holds.
    """
    edges = BookingAsset.objects.filter(is_active=True).select_related(
        "booking", "asset"
    )
    if organization_id is not None:
        edges = edges.filter(booking__organization_id=organization_id)
    edges = edges.order_by("asset_id", "starts_at", "pk")

    pairs = []
    open_edges = []
    current_asset = None
    for edge in edges.iterator():
        if edge.asset_id != current_asset:
            current_asset = edge.asset_id
            open_edges = []
        # Sorted by start, so an earlier edge collides iff it ends later
        open_edges = [e for e in open_edges if e.ends_at > edge.starts_at]
        pairs.extend((e, edge) for e in open_edges)
        open_edges.append(edge)
    return pairs

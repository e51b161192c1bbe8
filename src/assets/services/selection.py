"""Bulk selection resolution.

A bulk action targets either an explicit list of ids or "everything
matching the filter I was looking at". Either way the ids are worked out
again here, at execution time, inside the caller's organisation. A list
the client rendered earlier may be stale by now, and a select-all over
thousands of rows is never shipped as ids.
"""

import logging
from dataclasses import dataclass, field

from django.conf import settings

from ..models import Asset, Booking
from .filters import (
    AssetFilter,
    BookingFilter,
    build_asset_filter_queryset,
    build_booking_filter_queryset,
)
from .scope import ActorContext, _reject_foreign, normalize_ids

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Selection:
    """Explicit ids, or a select-all marker plus the filter params."""

    ids: tuple = ()
    select_all: bool = False
    filters: dict = field(default_factory=dict)

    @classmethod
    def explicit(cls, ids) -> "Selection":
        return cls(ids=tuple(ids))

    @classmethod
    def all_matching(cls, filters=None) -> "Selection":
        return cls(select_all=True, filters=dict(filters or {}))

    @classmethod
    def from_payload(cls, payload: dict) -> "Selection":
        """Parse ``{"ids": [...]}`` or ``{"all": true, "filter": {...}}``."""
        select_all = payload.get("all")
        if select_all is True or str(select_all).lower() in ("1", "true"):
            return cls.all_matching(payload.get("filter"))
        return cls.explicit(payload.get("ids") or [])

    def to_payload(self) -> dict:
        if self.select_all:
            return {"all": True, "filter": dict(self.filters)}
        return {"ids": list(self.ids)}


def _cap(ids, take_all):
    if take_all:
        return list(ids)
    return list(ids[: settings.BULK_SELECTION_LIMIT])


def _resolve_explicit(ctx, model, queryset, ids, label, take_all):
    wanted = normalize_ids(ids)
    owners = dict(
        queryset.filter(pk__in=wanted).values_list("pk", "organization_id")
    )
    foreign = sorted(
        pk for pk, org_id in owners.items() if org_id != ctx.organization_id
    )
    if foreign:
        _reject_foreign(ctx, label, foreign)

    missing = [pk for pk in wanted if pk not in owners]
    if missing:
        logger.info(
            "Dropping %d %s id(s) that no longer exist: %s",
            len(missing),
            label,
            missing,
        )
    return _cap([pk for pk in wanted if pk in owners], take_all)


def resolve_booking_selection(
    ctx: ActorContext, selection: Selection, take_all: bool = False
) -> list[int]:
    """Return the booking ids a bulk action applies to, right now.

    Without ``take_all`` the result is capped at
    ``settings.BULK_SELECTION_LIMIT`` rows.
    """
    if selection.select_all:
        filters = BookingFilter.from_params(selection.filters)
        queryset = build_booking_filter_queryset(ctx, filters)
        return _cap(queryset.values_list("pk", flat=True), take_all)
    return _resolve_explicit(
        ctx,
        Booking,
        Booking.objects.alive(),
        selection.ids,
        "booking",
        take_all,
    )


def resolve_asset_selection(
    ctx: ActorContext, selection: Selection, take_all: bool = False
) -> list[int]:
    if selection.select_all:
        filters = AssetFilter.from_params(selection.filters)
        queryset = build_asset_filter_queryset(ctx, filters)
        return _cap(queryset.values_list("pk", flat=True), take_all)
    return _resolve_explicit(
        ctx, Asset, Asset.objects.all(), selection.ids, "asset", take_all
    )

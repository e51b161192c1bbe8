"""Filter descriptions and the query predicates they compile to.

A filter description is what a user had applied to a list when they
chose an action. It is stored and transmitted as a plain dict of params
and compiled into a queryset every time it is used; it is never turned
into a cached list of ids.
"""

from dataclasses import dataclass
from datetime import datetime

from django.core.exceptions import ValidationError
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from ..models import Booking
from .scope import ActorContext, normalize_ids, scoped_assets, scoped_bookings
from .search import search_assets, search_bookings

# Explicit whitelist of allowed filter field names
ALLOWED_BOOKING_FILTER_FIELDS = {
    "q",
    "status",
    "tag",
    "custodian",
    "starts_after",
    "ends_before",
}

ALLOWED_ASSET_FILTER_FIELDS = {
    "q",
    "tag",
    "available",
}


def validate_filter_params(params: dict, allowed: set) -> dict:
    """Validate and sanitize filter parameters.

    Strips unknown keys and empty values. Returns a clean dict
    containing only whitelisted, non-empty filter parameters.
    """
    return {
        k: v
        for k, v in (params or {}).items()
        if k in allowed and not _is_empty(v)
    }


def _is_empty(value) -> bool:
    if value is None or value == "":
        return True
    return isinstance(value, (list, tuple, set)) and not value


def _as_list(value) -> list:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple, set)):
        return [v for v in value if v not in ("", None)]
    return [value]


def _parse_moment(value, label):
    if isinstance(value, datetime):
        moment = value
    else:
        moment = parse_datetime(str(value))
        if moment is None:
            raise ValidationError(f"'{value}' is not a valid {label}.")
    if timezone.is_naive(moment):
        moment = timezone.make_aware(moment)
    return moment


@dataclass(frozen=True)
class BookingFilter:
    q: str = ""
    statuses: tuple = ()
    tag_ids: tuple = ()
    custodian_id: int = None
    starts_after: datetime = None
    ends_before: datetime = None

    @classmethod
    def from_params(cls, params: dict) -> "BookingFilter":
        clean = validate_filter_params(params, ALLOWED_BOOKING_FILTER_FIELDS)

        statuses = tuple(_as_list(clean.get("status", [])))
        valid = dict(Booking.STATUS_CHOICES)
        invalid = [s for s in statuses if s not in valid]
        if invalid:
            raise ValidationError(
                f"Unknown booking status(es): {', '.join(invalid)}."
            )

        custodian = clean.get("custodian")
        return cls(
            q=str(clean.get("q", "")).strip(),
            statuses=statuses,
            tag_ids=tuple(normalize_ids(_as_list(clean.get("tag", [])))),
            custodian_id=(
                normalize_ids([custodian])[0] if custodian else None
            ),
            starts_after=(
                _parse_moment(clean["starts_after"], "start of range")
                if "starts_after" in clean
                else None
            ),
            ends_before=(
                _parse_moment(clean["ends_before"], "end of range")
                if "ends_before" in clean
                else None
            ),
        )

    def to_params(self) -> dict:
        """JSON-safe params that ``from_params`` reads back."""
        params = {}
        if self.q:
            params["q"] = self.q
        if self.statuses:
            params["status"] = list(self.statuses)
        if self.tag_ids:
            params["tag"] = list(self.tag_ids)
        if self.custodian_id:
            params["custodian"] = self.custodian_id
        if self.starts_after:
            params["starts_after"] = self.starts_after.isoformat()
        if self.ends_before:
            params["ends_before"] = self.ends_before.isoformat()
        return params


@dataclass(frozen=True)
class AssetFilter:
    q: str = ""
    tag_ids: tuple = ()
    available: bool = None

    @classmethod
    def from_params(cls, params: dict) -> "AssetFilter":
        clean = validate_filter_params(params, ALLOWED_ASSET_FILTER_FIELDS)
        available = clean.get("available")
        if available is not None and not isinstance(available, bool):
            available = str(available).lower() in ("1", "true", "yes")
        return cls(
            q=str(clean.get("q", "")).strip(),
            tag_ids=tuple(normalize_ids(_as_list(clean.get("tag", [])))),
            available=available,
        )


def build_booking_filter_queryset(ctx: ActorContext, filters: BookingFilter):
    """Compile a booking filter into an organisation-scoped queryset.

    The date range matches bookings whose window overlaps
    ``[starts_after, ends_before)``. Ordering is deterministic so capped
    selections are stable.
    """
    queryset = scoped_bookings(ctx)

    if filters.statuses:
        queryset = queryset.filter(status__in=filters.statuses)
    if filters.tag_ids:
        queryset = queryset.filter(tags__id__in=filters.tag_ids)
    if filters.custodian_id:
        queryset = queryset.filter(custodian_id=filters.custodian_id)
    if filters.starts_after:
        queryset = queryset.filter(ends_at__gt=filters.starts_after)
    if filters.ends_before:
        queryset = queryset.filter(starts_at__lt=filters.ends_before)
    if filters.q:
        queryset = search_bookings(queryset, filters.q)

    return queryset.distinct().order_by("starts_at", "pk")


def build_asset_filter_queryset(ctx: ActorContext, filters: AssetFilter):
    queryset = scoped_assets(ctx)

    if filters.tag_ids:
        queryset = queryset.filter(tags__id__in=filters.tag_ids)
    if filters.available is not None:
        queryset = queryset.filter(available_to_book=filters.available)
    if filters.q:
        queryset = search_assets(queryset, filters.q)

    return queryset.distinct().order_by("name", "pk")

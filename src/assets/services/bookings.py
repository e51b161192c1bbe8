"""Booking creation and editing.

Writes that make a booking occupy assets, or change what an active
booking occupies, follow one pattern: open a transaction, lock the
booking and the affected asset rows, run conflict detection, then write
the booking and its reservation edges before committing.
"""

import logging

from django.core.exceptions import ValidationError
from django.db import transaction as db_transaction
from django.utils import timezone

from ..exceptions import StateTransitionError
from ..models import Booking, BookingAsset, BookingTransition
from .conflicts import ensure_no_conflicts, overlap_violation_as_conflict
from .overlap import Window
from .scope import (
    ActorContext,
    guard_assets,
    guard_booking,
    guard_custodian,
    guard_tags,
    normalize_ids,
)
from .state import ensure_available, ensure_not_in_past, transition

logger = logging.getLogger(__name__)

_UNSET = object()


def create_booking(
    ctx: ActorContext,
    *,
    name: str,
    asset_ids,
    window: Window,
    custodian_id=None,
    description: str = "",
    tag_ids=(),
    reserve: bool = False,
    now=None,
) -> Booking:
    """Create a booking in ``draft``, optionally reserving it at once.

    Drafts hold nothing, so they are created without a conflict check.
    With ``reserve=True`` the draft is moved to ``reserved`` in the same
    transaction; a conflict rolls back the whole creation.
    """
    ids = normalize_ids(asset_ids)
    if not ids:
        raise ValidationError("A booking needs at least one asset.")
    if not name or not name.strip():
        raise ValidationError("A booking needs a name.")
    now = now or timezone.now()

    with db_transaction.atomic():
        assets = guard_assets(ctx, ids)
        ensure_available(assets)
        custodian = guard_custodian(ctx, custodian_id)
        tags = guard_tags(ctx, tag_ids)

        booking = Booking.objects.create(
            organization_id=ctx.organization_id,
            name=name.strip(),
            description=description,
            starts_at=window.starts_at,
            ends_at=window.ends_at,
            created_by=ctx.user,
            custodian=custodian,
        )
        BookingAsset.objects.bulk_create(
            [
                BookingAsset(
                    booking=booking,
                    asset=asset,
                    position=position,
                    starts_at=window.starts_at,
                    ends_at=window.ends_at,
                )
                for position, asset in enumerate(assets)
            ]
        )
        if tags:
            booking.tags.set(tags)
        BookingTransition.objects.create(
            booking=booking,
            to_status="draft",
            actor=ctx.user,
            timestamp=now,
        )
        if reserve:
            booking = transition(ctx, booking.pk, "reserved", now=now)

    logger.info(
        "Booking %s created in organisation %s with %d asset(s)",
        booking.pk,
        ctx.organization_id,
        len(ids),
    )
    return booking


def _replace_edges(booking: Booking, assets) -> None:
    """Make the booking's edges match ``assets`` (in order)."""
    wanted = [a.pk for a in assets]
    booking.edges.exclude(asset_id__in=wanted).delete()
    existing = {e.asset_id: e for e in booking.edges.all()}
    new_edges = []
    for position, asset in enumerate(assets):
        edge = existing.get(asset.pk)
        if edge is None:
            new_edges.append(
                BookingAsset(
                    booking=booking,
                    asset=asset,
                    position=position,
                    starts_at=booking.starts_at,
                    ends_at=booking.ends_at,
                )
            )
        elif edge.position != position:
            edge.position = position
            edge.save(update_fields=["position"])
    BookingAsset.objects.bulk_create(new_edges)


def update_booking(
    ctx: ActorContext,
    booking_id,
    *,
    name=None,
    description=None,
    asset_ids=None,
    window: Window = None,
    custodian_id=_UNSET,
    tag_ids=None,
    now=None,
) -> Booking:
    """Edit a booking.

    Assets and window may only change while the booking is ``draft`` or
    ``reserved``. For a reserved booking the new asset set and window are
    checked for conflicts (ignoring the booking's own edges) before
    anything is written.
    """
    now = now or timezone.now()
    scheduling_change = asset_ids is not None or window is not None

    with db_transaction.atomic():
        booking = guard_booking(ctx, booking_id, for_update=True)

        if scheduling_change:
            if booking.status not in Booking.EDITABLE_STATUSES:
                raise ValidationError(
                    f"Assets and dates of a {booking.get_status_display()} "
                    f"booking cannot be changed."
                )
            current_ids = booking.asset_ids()
            new_ids = (
                normalize_ids(asset_ids)
                if asset_ids is not None
                else current_ids
            )
            if not new_ids:
                raise ValidationError("A booking needs at least one asset.")
            new_window = window or Window.of(booking)

            assets = guard_assets(ctx, new_ids, for_update=booking.is_active)
            ensure_available([a for a in assets if a.pk not in current_ids])
            if booking.is_active:
                if window is not None:
                    ensure_not_in_past(ctx, new_window, now)
                ensure_no_conflicts(
                    ctx, new_ids, new_window, booking_id=booking.pk
                )

        if name is not None:
            if not name.strip():
                raise ValidationError("A booking needs a name.")
            booking.name = name.strip()
        if description is not None:
            booking.description = description
        if custodian_id is not _UNSET:
            booking.custodian = guard_custodian(ctx, custodian_id)
        if tag_ids is not None:
            booking.tags.set(guard_tags(ctx, tag_ids))

        if scheduling_change:
            booking.starts_at = new_window.starts_at
            booking.ends_at = new_window.ends_at
            with overlap_violation_as_conflict(
                ctx, new_ids, new_window, booking.pk
            ):
                booking.save()
                _replace_edges(booking, assets)
                booking.sync_edges()
        else:
            booking.save()

    logger.info("Booking %s updated by user %s", booking.pk, ctx.user_id)
    return booking


def extend_booking(
    ctx: ActorContext, booking_id, ends_at, now=None
) -> Booking:
    """Move the end of an active booking, re-checking its assets."""
    with db_transaction.atomic():
        booking = guard_booking(ctx, booking_id, for_update=True)
        if not booking.is_active:
            raise ValidationError(
                "Only reserved or checked out bookings can be extended; "
                "edit a draft instead."
            )
        window = Window(booking.starts_at, ends_at)
        asset_ids = booking.asset_ids()
        guard_assets(ctx, asset_ids, for_update=True)
        ensure_no_conflicts(ctx, asset_ids, window, booking_id=booking.pk)

        booking.ends_at = window.ends_at
        with overlap_violation_as_conflict(
            ctx, asset_ids, window, booking.pk
        ):
            booking.save(update_fields=["ends_at", "updated_at"])
            booking.sync_edges()

    logger.info(
        "Booking %s extended to %s by user %s",
        booking.pk,
        window.ends_at.isoformat(),
        ctx.user_id,
    )
    return booking


def delete_booking(ctx: ActorContext, booking_id, now=None) -> Booking:
    """Soft-delete a booking that no longer occupies its assets.

    Active bookings must be cancelled first. The row is kept (with
    ``deleted_at`` set) so past reservations stay auditable.
    """
    now = now or timezone.now()
    with db_transaction.atomic():
        booking = guard_booking(ctx, booking_id, for_update=True)
        if booking.status not in Booking.DELETABLE_STATUSES:
            raise StateTransitionError(
                booking.status,
                "deleted",
                f"Booking '{booking.name}' is {booking.status}; cancel it "
                f"before deleting.",
            )
        previous = booking.status
        booking.deleted_at = now
        booking.save(update_fields=["deleted_at", "updated_at"])
        booking.sync_edges()
        BookingTransition.objects.create(
            booking=booking,
            from_status=previous,
            to_status="deleted",
            actor=ctx.user,
            timestamp=now,
        )

    logger.info("Booking %s deleted by user %s", booking.pk, ctx.user_id)
    return booking

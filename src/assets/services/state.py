"""Booking state machine and transition validation."""

import logging
from datetime import timedelta
from datetime import timezone as dt_timezone

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction as db_transaction
from django.utils import timezone

from ..exceptions import StateTransitionError
from ..models import Booking, BookingTransition
from .conflicts import ensure_no_conflicts, overlap_violation_as_conflict
from .overlap import Window
from .scope import ActorContext, guard_assets, guard_booking

logger = logging.getLogger(__name__)

# Lifecycle timestamp stamped when a booking enters a status
TIMESTAMP_FIELDS = {
    "reserved": "reserved_at",
    "checked_out": "checked_out_at",
    "completed": "completed_at",
    "cancelled": "cancelled_at",
}


def validate_transition(booking: Booking, new_status: str) -> None:
    """Raise if ``booking`` may not move to ``new_status``.

    Only checks the transition table; guards that need the store are
    applied by ``transition``.
    """
    if new_status not in dict(Booking.STATUS_CHOICES):
        raise ValidationError(f"'{new_status}' is not a valid status.")
    if not booking.can_transition_to(new_status):
        allowed = Booking.VALID_TRANSITIONS.get(booking.status, [])
        raise StateTransitionError(
            booking.status,
            new_status,
            f"Cannot transition booking '{booking.name}' from "
            f"'{booking.status}' to '{new_status}'. Allowed transitions: "
            f"{', '.join(allowed) or 'none'}.",
        )


def ensure_not_in_past(ctx: ActorContext, window: Window, now) -> None:
    """Only privileged roles may reserve a window that already started."""
    if window.starts_at < now and not ctx.can_backdate:
        raise ValidationError(
            "Booking cannot start in the past. Choose a later start time."
        )


def ensure_available(assets) -> None:
    unavailable = [a.name for a in assets if not a.available_to_book]
    if unavailable:
        raise ValidationError(
            f"Asset(s) not available for booking: {', '.join(unavailable)}."
        )


def _check_reservable(ctx: ActorContext, booking: Booking, now) -> None:
    asset_ids = booking.asset_ids()
    if not asset_ids:
        raise ValidationError("A booking needs at least one asset.")
    window = Window.of(booking)
    ensure_not_in_past(ctx, window, now)
    assets = guard_assets(ctx, asset_ids, for_update=True)
    ensure_available(assets)
    ensure_no_conflicts(ctx, asset_ids, window, booking_id=booking.pk)


def _check_checkout(booking: Booking, now) -> None:
    grace = timedelta(minutes=settings.BOOKING_CHECKOUT_GRACE_MINUTES)
    earliest = booking.starts_at - grace
    if now < earliest:
        earliest = timezone.localtime(earliest, dt_timezone.utc)
        raise ValidationError(
            f"Booking '{booking.name}' cannot be checked out before "
            f"{earliest:%Y-%m-%d %H:%M} UTC."
        )


def apply_transition(
    ctx: ActorContext, booking: Booking, new_status: str, now, notes=""
) -> Booking:
    """Persist a validated transition and log it.

    Caller must hold the booking row lock.
    """
    previous = booking.status
    booking.status = new_status
    update_fields = ["status", "updated_at"]
    stamp = TIMESTAMP_FIELDS.get(new_status)
    if stamp:
        setattr(booking, stamp, now)
        update_fields.append(stamp)
    booking.save(update_fields=update_fields)
    booking.sync_edges()
    BookingTransition.objects.create(
        booking=booking,
        from_status=previous,
        to_status=new_status,
        actor=ctx.user,
        notes=notes,
        timestamp=now,
    )
    return booking


def transition(
    ctx: ActorContext, booking_id, new_status: str, now=None, notes=""
) -> Booking:
    """Validate and perform a lifecycle transition.

    Moving into ``reserved`` locks the booking's assets and re-runs
    conflict detection against their current edges. Returns the saved
    booking. Raises StateTransitionError, ConflictError or
    ValidationError.
    """
    now = now or timezone.now()
    with db_transaction.atomic():
        booking = guard_booking(ctx, booking_id, for_update=True)
        validate_transition(booking, new_status)

        if new_status == "reserved":
            _check_reservable(ctx, booking, now)
            with overlap_violation_as_conflict(
                ctx, booking.asset_ids(), Window.of(booking), booking.pk
            ):
                apply_transition(ctx, booking, new_status, now, notes)
        else:
            if new_status == "checked_out":
                _check_checkout(booking, now)
            apply_transition(ctx, booking, new_status, now, notes)

    logger.info(
        "Booking %s moved to %s by user %s",
        booking.pk,
        new_status,
        ctx.user_id,
    )
    return booking

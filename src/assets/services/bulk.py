"""Bulk operations service for bookings and assets.

The selection is resolved again at execution time, then the operation is
applied to one item at a time, each in its own transaction. A failing
item is recorded in the outcome and never rolls back its siblings.
"""

import logging
from dataclasses import dataclass, field

from django.conf import settings
from django.core.cache import cache
from django.core.exceptions import (
    ObjectDoesNotExist,
    PermissionDenied,
    ValidationError,
)
from django.db import transaction as db_transaction
from django.db.models import ProtectedError

from ..models import Booking
from .bookings import delete_booking
from .export import export_bookings_xlsx
from .scope import ActorContext, guard_assets, scoped_bookings
from .selection import (
    Selection,
    resolve_asset_selection,
    resolve_booking_selection,
)
from .state import transition

logger = logging.getLogger(__name__)

BOOKING_OPERATIONS = ("cancel", "delete", "status_change", "export")
ASSET_OPERATIONS = ("make_available", "make_unavailable", "delete")

# Failures that are a normal answer for one item
EXPECTED_ERRORS = (
    ValidationError,
    PermissionDenied,
    ObjectDoesNotExist,
    ProtectedError,
)


@dataclass(frozen=True)
class ItemFailure:
    item_id: int
    error_kind: str
    message: str

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "error_kind": self.error_kind,
            "message": self.message,
        }


@dataclass
class BulkOutcome:
    """What a bulk call did, item by item."""

    operation: str
    selected: int = 0
    attempted: int = 0
    succeeded_ids: list = field(default_factory=list)
    failures: list = field(default_factory=list)
    cancelled: bool = False
    payload: object = None

    @property
    def succeeded(self) -> int:
        return len(self.succeeded_ids)

    @property
    def failed(self) -> int:
        return len(self.failures)

    def record_success(self, item_id):
        self.attempted += 1
        self.succeeded_ids.append(item_id)

    def record_failure(self, item_id, error, message=None):
        self.attempted += 1
        if message is None:
            messages = getattr(error, "messages", None)
            message = " ".join(messages) if messages else str(error)
        self.failures.append(
            ItemFailure(
                item_id=item_id,
                error_kind=type(error).__name__,
                message=message,
            )
        )

    def to_dict(self) -> dict:
        return {
            "operation": self.operation,
            "selected": self.selected,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "succeeded_ids": list(self.succeeded_ids),
            "failures": [f.to_dict() for f in self.failures],
            "cancelled": self.cancelled,
        }


class CacheCancelToken:
    """Cancel flag shared between processes through the Django cache."""

    def __init__(self, key):
        self.cache_key = f"bulk-cancel:{key}"

    def is_set(self) -> bool:
        return bool(cache.get(self.cache_key))

    def set(self):
        cache.set(self.cache_key, True, timeout=settings.BULK_CANCEL_TIMEOUT)


def _stopped(outcome, cancel_token) -> bool:
    if cancel_token is not None and cancel_token.is_set():
        outcome.cancelled = True
        return True
    return False


def _error_message(error):
    if isinstance(error, ProtectedError):
        return "Still referenced by one or more bookings."
    if isinstance(error, ObjectDoesNotExist):
        return "No longer exists."
    return None


def _run_items(outcome, ids, apply, cancel_token):
    for item_id in ids:
        if _stopped(outcome, cancel_token):
            break
        try:
            apply(item_id)
        except EXPECTED_ERRORS as e:
            outcome.record_failure(item_id, e, _error_message(e))
        except Exception as e:
            logger.exception(
                "Unexpected error during bulk %s on item %s",
                outcome.operation,
                item_id,
            )
            outcome.record_failure(item_id, e)
        else:
            outcome.record_success(item_id)


def _log_outcome(ctx, outcome):
    logger.info(
        "Bulk %s by user %s in organisation %s: %d attempted, "
        "%d succeeded, %d failed%s",
        outcome.operation,
        ctx.user_id,
        ctx.organization_id,
        outcome.attempted,
        outcome.succeeded,
        outcome.failed,
        " (cancelled)" if outcome.cancelled else "",
    )


def _export(ctx, outcome, ids, cancel_token):
    rows = set(
        scoped_bookings(ctx).filter(pk__in=ids).values_list("pk", flat=True)
    )
    collected = []
    for item_id in ids:
        if _stopped(outcome, cancel_token):
            break
        if item_id in rows:
            collected.append(item_id)
            outcome.record_success(item_id)
        else:
            outcome.record_failure(
                item_id, Booking.DoesNotExist(), "No longer exists."
            )
    queryset = scoped_bookings(ctx).filter(pk__in=collected)
    outcome.payload = export_bookings_xlsx(
        queryset.order_by("starts_at", "pk")
    )


def execute_bulk(
    ctx: ActorContext,
    selection: Selection,
    operation: str,
    *,
    target_status=None,
    cancel_token=None,
    now=None,
) -> BulkOutcome:
    """Apply one operation to every booking the selection resolves to.

    ``cancel`` and ``status_change`` go through the state machine one
    booking at a time; ``delete`` is a soft delete. ``export`` leaves
    the bookings untouched and puts the workbook in ``outcome.payload``.
    Cross-organisation ids in the selection fail the whole call.
    """
    if operation not in BOOKING_OPERATIONS:
        raise ValidationError(f"'{operation}' is not a booking operation.")
    if operation == "status_change":
        if target_status not in dict(Booking.STATUS_CHOICES):
            raise ValidationError(
                "A valid target status is required for a status change."
            )
    elif operation == "cancel":
        target_status = "cancelled"

    ids = resolve_booking_selection(ctx, selection, take_all=True)
    outcome = BulkOutcome(operation=operation, selected=len(ids))

    if operation == "export":
        _export(ctx, outcome, ids, cancel_token)
    elif operation == "delete":
        _run_items(
            outcome,
            ids,
            lambda pk: delete_booking(ctx, pk, now=now),
            cancel_token,
        )
    else:
        _run_items(
            outcome,
            ids,
            lambda pk: transition(ctx, pk, target_status, now=now),
            cancel_token,
        )

    _log_outcome(ctx, outcome)
    return outcome


def _set_availability(ctx, asset_id, available):
    with db_transaction.atomic():
        asset = guard_assets(ctx, [asset_id], for_update=True)[0]
        if asset.available_to_book != available:
            asset.available_to_book = available
            asset.save(update_fields=["available_to_book", "updated_at"])


def _delete_asset(ctx, asset_id):
    with db_transaction.atomic():
        asset = guard_assets(ctx, [asset_id], for_update=True)[0]
        asset.delete()


def execute_asset_bulk(
    ctx: ActorContext,
    selection: Selection,
    operation: str,
    *,
    cancel_token=None,
) -> BulkOutcome:
    """Apply one operation to every asset the selection resolves to.

    Deleting an asset that any booking still references fails for that
    asset only.
    """
    if operation not in ASSET_OPERATIONS:
        raise ValidationError(f"'{operation}' is not an asset operation.")

    ids = resolve_asset_selection(ctx, selection, take_all=True)
    outcome = BulkOutcome(operation=operation, selected=len(ids))

    available = operation == "make_available"

    def apply(asset_id):
        if operation == "delete":
            _delete_asset(ctx, asset_id)
        else:
            _set_availability(ctx, asset_id, available)

    _run_items(outcome, ids, apply, cancel_token)
    _log_outcome(ctx, outcome)
    return outcome

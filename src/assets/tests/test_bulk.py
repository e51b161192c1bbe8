"""Tests for bulk operations on bookings and assets."""

from io import BytesIO

import openpyxl
import pytest

from django.core.exceptions import ValidationError

from assets.exceptions import AuthorizationError
from assets.factories import AssetFactory, BookingFactory, TagFactory
from assets.models import Asset, Booking
from assets.services.bulk import (
    BulkOutcome,
    CacheCancelToken,
    execute_asset_bulk,
    execute_bulk,
)
from assets.services.selection import Selection


class CancelAfter:
    """Cancel token that trips after ``n`` checks."""

    def __init__(self, n):
        self.remaining = n

    def is_set(self):
        self.remaining -= 1
        return self.remaining < 0


# ============================================================
# BOOKING OPERATIONS
# ============================================================


class TestBulkCancel:
    def test_filter_with_three_completed(self, ctx, organization):
        tour = TagFactory(organization=organization, name="tour")
        BookingFactory.create_batch(
            47, organization=organization, status="reserved", tags=[tour]
        )
        BookingFactory.create_batch(
            3, organization=organization, status="completed", tags=[tour]
        )
        BookingFactory(organization=organization, status="reserved")

        outcome = execute_bulk(
            ctx, Selection.all_matching({"tag": [tour.pk]}), "cancel"
        )

        assert outcome.selected == 50
        assert outcome.attempted == 50
        assert outcome.succeeded == 47
        assert outcome.failed == 3
        assert {f.error_kind for f in outcome.failures} == {
            "StateTransitionError"
        }
        assert all("completed" in f.message for f in outcome.failures)
        assert (
            Booking.objects.filter(tags=tour, status="cancelled").count()
            == 47
        )
        # The untagged booking is untouched
        assert Booking.objects.filter(status="reserved").count() == 1

    def test_explicit_ids(self, ctx, organization):
        a, b = BookingFactory.create_batch(
            2, organization=organization, status="reserved"
        )
        outcome = execute_bulk(ctx, Selection.explicit([b.pk]), "cancel")
        assert outcome.succeeded_ids == [b.pk]
        a.refresh_from_db()
        assert a.status == "reserved"

    def test_cross_tenant_selection_is_fatal(
        self, ctx, organization, other_organization
    ):
        mine = BookingFactory(organization=organization, status="reserved")
        theirs = BookingFactory(
            organization=other_organization, status="reserved"
        )
        with pytest.raises(AuthorizationError):
            execute_bulk(
                ctx, Selection.explicit([mine.pk, theirs.pk]), "cancel"
            )
        mine.refresh_from_db()
        assert mine.status == "reserved"

    def test_empty_selection(self, ctx):
        outcome = execute_bulk(ctx, Selection.explicit([]), "cancel")
        assert outcome.attempted == 0
        assert not outcome.cancelled


class TestBulkStatusChange:
    def test_reserve_drafts_with_partial_conflict(
        self, ctx, organization, asset, at
    ):
        BookingFactory(
            organization=organization,
            name="Holder",
            starts_at=at(9),
            ends_at=at(10),
            assets=[asset],
        )
        clash = BookingFactory(
            organization=organization,
            status="draft",
            starts_at=at(9.5),
            ends_at=at(10.5),
            assets=[asset],
        )
        fine = BookingFactory(
            organization=organization,
            status="draft",
            starts_at=at(10),
            ends_at=at(11),
            assets=[AssetFactory(organization=organization)],
        )
        outcome = execute_bulk(
            ctx,
            Selection.explicit([clash.pk, fine.pk]),
            "status_change",
            target_status="reserved",
        )
        assert outcome.succeeded_ids == [fine.pk]
        [failure] = outcome.failures
        assert failure.item_id == clash.pk
        assert failure.error_kind == "ConflictError"
        assert "Holder" in failure.message

    def test_missing_target_status(self, ctx):
        with pytest.raises(ValidationError, match="target status"):
            execute_bulk(ctx, Selection.explicit([]), "status_change")

    def test_unknown_operation(self, ctx):
        with pytest.raises(ValidationError, match="not a booking operation"):
            execute_bulk(ctx, Selection.explicit([]), "explode")


class TestBulkDelete:
    def test_deletes_only_inactive(self, ctx, organization):
        done = BookingFactory(organization=organization, status="completed")
        draft = BookingFactory(organization=organization, status="draft")
        live = BookingFactory(organization=organization, status="reserved")
        outcome = execute_bulk(
            ctx, Selection.explicit([done.pk, live.pk, draft.pk]), "delete"
        )
        assert outcome.succeeded_ids == [done.pk, draft.pk]
        assert [f.item_id for f in outcome.failures] == [live.pk]
        assert list(Booking.objects.alive().values_list("pk", flat=True)) == [
            live.pk
        ]


class TestBulkExport:
    def test_workbook_in_payload(self, ctx, organization):
        a = BookingFactory(organization=organization, name="Alpha")
        b = BookingFactory(organization=organization, name="Beta")
        outcome = execute_bulk(
            ctx, Selection.explicit([a.pk, b.pk]), "export"
        )
        assert outcome.succeeded == 2
        wb = openpyxl.load_workbook(BytesIO(outcome.payload.getvalue()))
        names = [row[1] for row in wb["Bookings"].iter_rows(values_only=True)]
        assert names[1:] == ["Alpha", "Beta"]

    def test_export_leaves_bookings_untouched(self, ctx, organization):
        booking = BookingFactory(organization=organization, status="reserved")
        execute_bulk(ctx, Selection.explicit([booking.pk]), "export")
        booking.refresh_from_db()
        assert booking.status == "reserved"


# ============================================================
# CANCELLATION
# ============================================================


class TestCancellation:
    def test_stops_between_items(self, ctx, organization):
        bookings = BookingFactory.create_batch(
            5, organization=organization, status="reserved"
        )
        outcome = execute_bulk(
            ctx,
            Selection.explicit([b.pk for b in bookings]),
            "cancel",
            cancel_token=CancelAfter(2),
        )
        assert outcome.cancelled
        assert outcome.attempted == 2
        assert outcome.succeeded_ids == [bookings[0].pk, bookings[1].pk]
        # Already-cancelled items stay cancelled
        assert Booking.objects.filter(status="cancelled").count() == 2
        assert Booking.objects.filter(status="reserved").count() == 3

    def test_cache_token(self):
        token = CacheCancelToken("task-1")
        assert not token.is_set()
        token.set()
        assert token.is_set()
        assert not CacheCancelToken("task-2").is_set()

    def test_preset_token_attempts_nothing(self, ctx, organization):
        booking = BookingFactory(organization=organization, status="reserved")
        token = CacheCancelToken("stop-now")
        token.set()
        outcome = execute_bulk(
            ctx, Selection.explicit([booking.pk]), "cancel", cancel_token=token
        )
        assert outcome.cancelled
        assert outcome.attempted == 0


# ============================================================
# ASSET OPERATIONS
# ============================================================


class TestAssetBulk:
    def test_make_unavailable(self, ctx, asset, second_asset):
        outcome = execute_asset_bulk(
            ctx,
            Selection.explicit([asset.pk, second_asset.pk]),
            "make_unavailable",
        )
        assert outcome.succeeded == 2
        assert not Asset.objects.filter(available_to_book=True).exists()

    def test_make_available_by_filter(self, ctx, organization):
        AssetFactory.create_batch(
            3, organization=organization, available_to_book=False
        )
        outcome = execute_asset_bulk(
            ctx,
            Selection.all_matching({"available": False}),
            "make_available",
        )
        assert outcome.succeeded == 3
        assert Asset.objects.filter(available_to_book=True).count() == 3

    def test_delete_referenced_asset_fails_per_item(
        self, ctx, organization, asset, second_asset
    ):
        BookingFactory(
            organization=organization, status="completed", assets=[asset]
        )
        outcome = execute_asset_bulk(
            ctx, Selection.explicit([asset.pk, second_asset.pk]), "delete"
        )
        assert outcome.succeeded_ids == [second_asset.pk]
        [failure] = outcome.failures
        assert failure.item_id == asset.pk
        assert failure.error_kind == "ProtectedError"
        assert Asset.objects.filter(pk=asset.pk).exists()

    def test_unknown_operation(self, ctx):
        with pytest.raises(ValidationError, match="not an asset operation"):
            execute_asset_bulk(ctx, Selection.explicit([]), "cancel")


class TestBulkOutcome:
    def test_to_dict(self):
        outcome = BulkOutcome(operation="cancel", selected=2)
        outcome.record_success(1)
        outcome.record_failure(2, ValidationError("Nope."))
        assert outcome.to_dict() == {
            "operation": "cancel",
            "selected": 2,
            "attempted": 2,
            "succeeded": 1,
            "failed": 1,
            "succeeded_ids": [1],
            "failures": [
                {
                    "item_id": 2,
                    "error_kind": "ValidationError",
                    "message": "Nope.",
                }
            ],
            "cancelled": False,
        }

    def test_failure_without_messages(self):
        outcome = BulkOutcome(operation="delete")
        outcome.record_failure(5, RuntimeError("disk on fire"))
        assert outcome.failures[0].message == "disk on fire"
        assert outcome.failures[0].error_kind == "RuntimeError"

"""Tests for Django admin interface."""

import pytest

from django.urls import reverse

from assets.factories import (
    AssetFactory,
    BookingFactory,
    OrganizationFactory,
    TagFactory,
)
from assets.models import Asset, Booking

# ============================================================
# ADMIN TESTS
# ============================================================


@pytest.mark.django_db
class TestAdminPages:
    @pytest.mark.parametrize(
        "name",
        [
            "admin:assets_booking_changelist",
            "admin:assets_asset_changelist",
            "admin:assets_tag_changelist",
            "admin:accounts_organization_changelist",
            "admin:accounts_customuser_changelist",
        ],
    )
    def test_changelists_render(self, admin_client, name):
        response = admin_client.get(reverse(name))
        assert response.status_code == 200

    def test_booking_change_page(self, admin_client, organization, asset):
        booking = BookingFactory(organization=organization, assets=[asset])
        response = admin_client.get(
            reverse("admin:assets_booking_change", args=[booking.pk])
        )
        assert response.status_code == 200
        assert asset.name.encode() in response.content

    def test_bookings_cannot_be_added_in_admin(self, admin_client):
        response = admin_client.get(reverse("admin:assets_booking_add"))
        assert response.status_code == 403


@pytest.mark.django_db
class TestAdminDisplays:
    def test_asset_active_booking_count(self, organization, asset):
        from assets.admin import AssetAdmin

        BookingFactory(organization=organization, assets=[asset])
        BookingFactory(
            organization=organization, status="cancelled", assets=[asset]
        )
        admin_instance = AssetAdmin(Asset, None)
        assert admin_instance.display_active_bookings(asset) == 1

    def test_tag_counts(self, organization):
        from assets.admin import TagAdmin
        from assets.models import Tag

        tag = TagFactory(organization=organization)
        AssetFactory(organization=organization).tags.add(tag)
        admin_instance = TagAdmin(Tag, None)
        assert admin_instance.display_asset_count(tag) == 1
        assert admin_instance.display_booking_count(tag) == 0


@pytest.mark.django_db
class TestBookingAdminActions:
    def test_cancel_selected(self, admin_client, organization):
        live = BookingFactory(organization=organization, status="reserved")
        done = BookingFactory(organization=organization, status="completed")
        response = admin_client.post(
            reverse("admin:assets_booking_changelist"),
            {
                "action": "cancel_selected",
                "_selected_action": [live.pk, done.pk],
            },
            follow=True,
        )
        assert response.status_code == 200
        live.refresh_from_db()
        done.refresh_from_db()
        assert live.status == "cancelled"
        assert done.status == "completed"
        assert b"1 booking(s) cancelled" in response.content

    def test_cancel_outside_membership(self, admin_client):
        foreign = BookingFactory(
            organization=OrganizationFactory(), status="reserved"
        )
        response = admin_client.post(
            reverse("admin:assets_booking_changelist"),
            {
                "action": "cancel_selected",
                "_selected_action": [foreign.pk],
            },
            follow=True,
        )
        assert response.status_code == 200
        foreign.refresh_from_db()
        assert foreign.status == "reserved"
        assert b"not a member" in response.content

    def test_export_selected(self, admin_client, organization):
        booking = BookingFactory(organization=organization)
        response = admin_client.post(
            reverse("admin:assets_booking_changelist"),
            {
                "action": "export_selected_xlsx",
                "_selected_action": [booking.pk],
            },
        )
        assert response.status_code == 200
        assert "spreadsheetml" in response["Content-Type"]
        assert "stockroom-bookings-export" in response["Content-Disposition"]

    def test_deleted_bookings_not_exported(self, admin_client, organization):
        from io import BytesIO

        import openpyxl

        booking = BookingFactory(
            organization=organization, status="draft", name="Gone"
        )
        Booking.objects.filter(pk=booking.pk).update(
            deleted_at=booking.ends_at
        )
        response = admin_client.post(
            reverse("admin:assets_booking_changelist"),
            {
                "action": "export_selected_xlsx",
                "_selected_action": [booking.pk],
            },
        )
        wb = openpyxl.load_workbook(BytesIO(response.content))
        assert wb["Bookings"].max_row == 1


# ============================================================
# ORGANISATION SCOPE IN ADMIN FORMS
# ============================================================


@pytest.mark.django_db
class TestAdminScope:
    def test_asset_organization_locked_once_booked(
        self, rf, admin_user, organization, asset
    ):
        from django.contrib.admin.sites import AdminSite

        from assets.admin import AssetAdmin

        request = rf.get("/")
        request.user = admin_user
        admin_instance = AssetAdmin(Asset, AdminSite())
        assert "organization" not in admin_instance.get_readonly_fields(
            request, asset
        )

        BookingFactory(organization=organization, assets=[asset])
        assert "organization" in admin_instance.get_readonly_fields(
            request, asset
        )

    def test_asset_form_rejects_foreign_tag(
        self, organization, other_organization
    ):
        from assets.admin import AssetAdminForm

        foreign_tag = TagFactory(organization=other_organization)
        form = AssetAdminForm(
            data={
                "organization": organization.pk,
                "name": "Dimmer pack",
                "tags": [foreign_tag.pk],
                "available_to_book": True,
            }
        )
        assert not form.is_valid()
        assert "tags" in form.errors

    def test_asset_form_accepts_own_tag(self, organization, tag):
        from assets.admin import AssetAdminForm

        form = AssetAdminForm(
            data={
                "organization": organization.pk,
                "name": "Dimmer pack",
                "tags": [tag.pk],
                "available_to_book": True,
            }
        )
        assert form.is_valid(), form.errors

    def test_booking_form_omits_scoped_fields(
        self, rf, admin_user, organization
    ):
        from django.contrib.admin.sites import AdminSite

        from assets.admin import BookingAdmin

        booking = BookingFactory(organization=organization)
        request = rf.get("/")
        request.user = admin_user
        form_class = BookingAdmin(Booking, AdminSite()).get_form(
            request, booking
        )
        assert "custodian" not in form_class.base_fields
        assert "tags" not in form_class.base_fields

    def test_posted_foreign_custodian_ignored(
        self, admin_client, organization, member_user, other_user
    ):
        booking = BookingFactory(
            organization=organization, custodian=member_user
        )
        admin_client.post(
            reverse("admin:assets_booking_change", args=[booking.pk]),
            {
                "name": "Renamed",
                "description": "",
                "custodian": other_user.pk,
                "edges-TOTAL_FORMS": "0",
                "edges-INITIAL_FORMS": "0",
                "edges-MIN_NUM_FORMS": "0",
                "edges-MAX_NUM_FORMS": "1000",
                "transitions-TOTAL_FORMS": "0",
                "transitions-INITIAL_FORMS": "0",
                "transitions-MIN_NUM_FORMS": "0",
                "transitions-MAX_NUM_FORMS": "1000",
            },
        )
        booking.refresh_from_db()
        assert booking.custodian == member_user

"""Admin configuration for assets app using django-unfold."""

from datetime import date

from unfold.admin import ModelAdmin, TabularInline
from unfold.contrib.filters.admin import (
    ChoicesDropdownFilter,
    MultipleRelatedDropdownFilter,
    RelatedDropdownFilter,
)
from unfold.decorators import action, display
from unfold.enums import ActionVariant

from django import forms
from django.conf import settings
from django.contrib import admin, messages
from django.core.exceptions import PermissionDenied
from django.http import HttpResponse
from django.utils.text import slugify

from .models import Asset, Booking, BookingAsset, BookingTransition, Tag
from .services.bulk import execute_bulk
from .services.export import export_bookings_xlsx
from .services.scope import actor_context_for
from .services.selection import Selection


@admin.register(Tag)
class TagAdmin(ModelAdmin):
    list_display = [
        "name",
        "organization",
        "color",
        "display_asset_count",
        "display_booking_count",
    ]
    list_filter = [("organization", RelatedDropdownFilter)]
    list_filter_submit = True
    search_fields = ["name"]

    @display(description="Assets")
    def display_asset_count(self, obj):
        return obj.assets.count()

    @display(description="Bookings")
    def display_booking_count(self, obj):
        return obj.bookings.filter(deleted_at__isnull=True).count()


class AssetAdminForm(forms.ModelForm):
    class Meta:
        model = Asset
        fields = "__all__"

    def clean(self):
        cleaned_data = super().clean()
        organization = cleaned_data.get("organization")
        organization_id = (
            organization.pk if organization else self.instance.organization_id
        )
        tags = cleaned_data.get("tags")
        if organization_id and tags:
            foreign = [
                t.name for t in tags if t.organization_id != organization_id
            ]
            if foreign:
                self.add_error(
                    "tags",
                    "Tags from another organisation: " + ", ".join(foreign),
                )
        return cleaned_data


@admin.register(Asset)
class AssetAdmin(ModelAdmin):
    form = AssetAdminForm
    list_display = [
        "name",
        "organization",
        "display_available",
        "display_active_bookings",
        "updated_at",
    ]
    list_filter = [
        ("organization", RelatedDropdownFilter),
        ("tags", MultipleRelatedDropdownFilter),
        "available_to_book",
    ]
    list_filter_submit = True
    search_fields = ["name", "description"]
    readonly_fields = ["created_by", "created_at", "updated_at"]
    filter_horizontal = ["tags"]

    @display(description="Bookable", boolean=True)
    def display_available(self, obj):
        return obj.available_to_book

    @display(description="Active bookings")
    def display_active_bookings(self, obj):
        return obj.booking_edges.filter(is_active=True).count()

    def get_readonly_fields(self, request, obj=None):
        fields = list(super().get_readonly_fields(request, obj))
        if obj is not None and obj.booking_edges.exists():
            fields.append("organization")
        return fields

    def save_model(self, request, obj, form, change):
        if not change:
            obj.created_by = request.user
        super().save_model(request, obj, form, change)


class BookingAssetInline(TabularInline):
    model = BookingAsset
    extra = 0
    fields = ["asset", "position", "starts_at", "ends_at", "is_active"]
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


class BookingTransitionInline(TabularInline):
    model = BookingTransition
    extra = 0
    fields = ["from_status", "to_status", "actor", "notes", "timestamp"]
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Booking)
class BookingAdmin(ModelAdmin):
    """Bookings are created and scheduled through the booking services.

    The admin shows them and offers the bulk actions. Only name and
    description are editable here; every scoped field goes through the
    services.
    """

    list_display = [
        "name",
        "organization",
        "display_status",
        "starts_at",
        "ends_at",
        "custodian",
        "display_deleted",
    ]
    list_filter = [
        ("status", ChoicesDropdownFilter),
        ("organization", RelatedDropdownFilter),
        ("tags", MultipleRelatedDropdownFilter),
    ]
    list_filter_submit = True
    search_fields = ["name", "description", "assets__name"]
    date_hierarchy = "starts_at"
    readonly_fields = [
        "organization",
        "status",
        "starts_at",
        "ends_at",
        "custodian",
        "tags",
        "created_by",
        "reserved_at",
        "checked_out_at",
        "completed_at",
        "cancelled_at",
        "deleted_at",
        "created_at",
        "updated_at",
    ]
    inlines = [BookingAssetInline, BookingTransitionInline]
    actions = ["cancel_selected", "export_selected_xlsx"]

    fieldsets = (
        (
            None,
            {
                "fields": (
                    "name",
                    "description",
                    "organization",
                    "status",
                    "starts_at",
                    "ends_at",
                    "custodian",
                    "tags",
                )
            },
        ),
        (
            "Lifecycle",
            {
                "fields": (
                    "created_by",
                    "reserved_at",
                    "checked_out_at",
                    "completed_at",
                    "cancelled_at",
                    "deleted_at",
                    "created_at",
                    "updated_at",
                ),
                "classes": ["tab"],
            },
        ),
    )

    @display(
        description="Status",
        label={
            "draft": "default",
            "reserved": "info",
            "checked_out": "warning",
            "completed": "success",
            "cancelled": "danger",
        },
    )
    def display_status(self, obj):
        return obj.status

    @display(description="Deleted", boolean=True)
    def display_deleted(self, obj):
        return obj.is_deleted

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    @action(description="Cancel selected bookings")
    def cancel_selected(self, request, queryset):
        by_org = {}
        for pk, org_id in queryset.values_list("pk", "organization_id"):
            by_org.setdefault(org_id, []).append(pk)

        for org_id, ids in by_org.items():
            try:
                ctx = actor_context_for(request.user, org_id)
            except PermissionDenied as e:
                messages.error(request, str(e))
                continue
            outcome = execute_bulk(ctx, Selection.explicit(ids), "cancel")
            messages.success(
                request, f"{outcome.succeeded} booking(s) cancelled."
            )
            for failure in outcome.failures:
                messages.warning(
                    request, f"Booking #{failure.item_id}: {failure.message}"
                )

    @action(
        description="Export selected to Excel",
        icon="download",
        variant=ActionVariant.PRIMARY,
    )
    def export_selected_xlsx(self, request, queryset):
        buffer = export_bookings_xlsx(queryset.filter(deleted_at__isnull=True))
        response = HttpResponse(
            buffer.getvalue(),
            content_type="application/vnd.openxmlformats-officedocument"
            ".spreadsheetml.sheet",
        )
        prefix = slugify(settings.SITE_NAME) or "stockroom"
        filename = f"{prefix}-bookings-export-{date.today().isoformat()}.xlsx"
        response["Content-Disposition"] = f'attachment; filename="{filename}"'
        return response

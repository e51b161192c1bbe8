"""Models for Stockroom assets and bookings."""

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone


class Tag(models.Model):
    """Organisation-scoped label for assets and bookings."""

    organization = models.ForeignKey(
        "accounts.Organization",
        on_delete=models.CASCADE,
        related_name="tags",
    )
    name = models.CharField(max_length=50)
    color = models.CharField(max_length=20, default="gray")

    class Meta:
        ordering = ["name"]
        constraints = [
            models.UniqueConstraint(
                fields=["organization", "name"],
                name="unique_tag_per_organization",
            ),
        ]

    def __str__(self):
        return self.name


class Asset(models.Model):
    """A physical item that can be reserved."""

    organization = models.ForeignKey(
        "accounts.Organization",
        on_delete=models.PROTECT,
        related_name="assets",
    )
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    tags = models.ManyToManyField(Tag, blank=True, related_name="assets")
    available_to_book = models.BooleanField(
        default=True,
        help_text="Administrative switch, independent of bookings",
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_assets",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name", "pk"]
        indexes = [
            models.Index(
                fields=["organization", "available_to_book"],
                name="idx_asset_org_available",
            ),
        ]

    def __str__(self):
        return self.name

    def _check_organization_change(self):
        if self.pk is None:
            return
        stored = (
            Asset.objects.filter(pk=self.pk)
            .values_list("organization_id", flat=True)
            .first()
        )
        if stored is None or stored == self.organization_id:
            return
        if self.booking_edges.exists():
            raise ValidationError(
                {
                    "organization": (
                        "An asset that has been booked cannot move to "
                        "another organisation."
                    )
                }
            )

    def clean(self):
        super().clean()
        self._check_organization_change()

    def save(self, *args, **kwargs):
        update_fields = kwargs.get("update_fields")
        if update_fields is None or "organization" in update_fields:
            self._check_organization_change()
        super().save(*args, **kwargs)


class BookingQuerySet(models.QuerySet):
    def alive(self):
        """Exclude soft-deleted bookings."""
        return self.filter(deleted_at__isnull=True)

    def for_organization(self, organization_id):
        return self.filter(organization_id=organization_id)

    def active(self):
        """Bookings that currently occupy their assets."""
        return self.filter(status__in=Booking.ACTIVE_STATUSES)


class Booking(models.Model):
    """A reservation of one or more assets over ``[starts_at, ends_at)``."""

    STATUS_CHOICES = [
        ("draft", "Draft"),
        ("reserved", "Reserved"),
        ("checked_out", "Checked out"),
        ("completed", "Completed"),
        ("cancelled", "Cancelled"),
    ]

    ACTIVE_STATUSES = ("reserved", "checked_out")
    EDITABLE_STATUSES = ("draft", "reserved")
    DELETABLE_STATUSES = ("draft", "completed", "cancelled")

    # Valid state transitions: from_status -> [to_statuses]
    VALID_TRANSITIONS = {
        "draft": ["reserved"],
        "reserved": ["checked_out", "cancelled"],
        "checked_out": ["completed", "cancelled"],
        "completed": [],
        "cancelled": [],
    }

    organization = models.ForeignKey(
        "accounts.Organization",
        on_delete=models.PROTECT,
        related_name="bookings",
    )
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    status = models.CharField(
        max_length=20, choices=STATUS_CHOICES, default="draft"
    )
    starts_at = models.DateTimeField()
    ends_at = models.DateTimeField()
    assets = models.ManyToManyField(
        Asset,
        through="BookingAsset",
        related_name="bookings",
        blank=True,
    )
    tags = models.ManyToManyField(Tag, blank=True, related_name="bookings")
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        related_name="created_bookings",
    )
    custodian = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="custodied_bookings",
    )
    reserved_at = models.DateTimeField(null=True, blank=True)
    checked_out_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    deleted_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = BookingQuerySet.as_manager()

    class Meta:
        ordering = ["starts_at", "pk"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(starts_at__lt=models.F("ends_at")),
                name="booking_starts_before_ends",
            ),
        ]
        indexes = [
            models.Index(
                fields=["organization", "status"],
                name="idx_booking_org_status",
            ),
            models.Index(
                fields=["organization", "starts_at", "ends_at"],
                name="idx_booking_org_window",
            ),
        ]

    def __str__(self):
        return self.name

    def clean(self):
        super().clean()
        if self.starts_at and self.ends_at and self.starts_at >= self.ends_at:
            raise ValidationError("Booking must start before it ends.")

    @property
    def is_active(self):
        return self.status in self.ACTIVE_STATUSES

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    def can_transition_to(self, new_status):
        """Check if the status transition is valid."""
        return new_status in self.VALID_TRANSITIONS.get(self.status, [])

    def asset_ids(self):
        """Asset ids in the order they were added to the booking."""
        return list(
            self.edges.order_by("position", "pk").values_list(
                "asset_id", flat=True
            )
        )

    def sync_edges(self):
        """Copy window and activity onto the reservation edges.

        Must run in the same transaction as the change to the booking.
        """
        return self.edges.update(
            starts_at=self.starts_at,
            ends_at=self.ends_at,
            is_active=self.is_active and self.deleted_at is None,
        )


class BookingAsset(models.Model):
    """Reservation edge between a booking and one asset.

    Window and activity are denormalised from the booking so the store
    can reject overlapping active edges for the same asset.
    """

    booking = models.ForeignKey(
        Booking,
        on_delete=models.CASCADE,
        related_name="edges",
    )
    asset = models.ForeignKey(
        Asset,
        on_delete=models.PROTECT,
        related_name="booking_edges",
    )
    position = models.PositiveIntegerField(default=0)
    starts_at = models.DateTimeField()
    ends_at = models.DateTimeField()
    is_active = models.BooleanField(default=False)

    class Meta:
        ordering = ["booking", "position", "pk"]
        constraints = [
            models.UniqueConstraint(
                fields=["booking", "asset"],
                name="unique_booking_asset",
            ),
        ]
        indexes = [
            models.Index(
                fields=["asset", "is_active", "starts_at", "ends_at"],
                name="idx_edge_asset_active_window",
            ),
        ]

    def __str__(self):
        return f"{self.booking_id} -> {self.asset_id}"


class BookingTransition(models.Model):
    """Immutable audit log of booking lifecycle changes."""

    booking = models.ForeignKey(
        Booking, on_delete=models.CASCADE, related_name="transitions"
    )
    from_status = models.CharField(max_length=20, blank=True)
    to_status = models.CharField(max_length=20)
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        related_name="booking_transitions",
    )
    notes = models.TextField(blank=True)
    timestamp = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-timestamp", "-pk"]

    def __str__(self):
        return (
            f"{self.booking_id}: {self.from_status or '-'} -> "
            f"{self.to_status}"
        )

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValidationError(
                "Booking transitions are immutable and cannot be modified."
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError(
            "Booking transitions are immutable and cannot be deleted."
        )

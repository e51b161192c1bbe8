"""Tests for organisation scoping of every core entry point."""

import pytest

from django.core.exceptions import ValidationError
from django.test.utils import override_settings

from assets.exceptions import AuthorizationError
from assets.factories import (
    AssetFactory,
    BookingFactory,
    MembershipFactory,
    TagFactory,
    UserFactory,
)
from assets.models import Booking


class TestActorContext:
    def test_built_from_membership(self, owner_user, organization):
        from assets.services.scope import actor_context_for

        ctx = actor_context_for(owner_user, organization.pk)
        assert ctx.organization_id == organization.pk
        assert ctx.role == "owner"
        assert ctx.user_id == owner_user.pk

    def test_user_field_typed_with_user_model(self):
        from dataclasses import fields

        from django.contrib.auth import get_user_model

        from assets.services.scope import ActorContext

        user_field = next(f for f in fields(ActorContext) if f.name == "user")
        assert user_field.type is get_user_model()

    def test_non_member_rejected(self, other_user, organization):
        from assets.services.scope import actor_context_for

        with pytest.raises(AuthorizationError):
            actor_context_for(other_user, organization.pk)

    def test_owner_can_backdate_by_default(self, ctx):
        assert ctx.can_backdate is True

    def test_base_member_cannot_backdate(self, member_ctx):
        assert member_ctx.can_backdate is False

    @override_settings(BOOKING_BACKDATE_ROLES=[])
    def test_empty_backdate_roles_forbids_everyone(self, ctx):
        assert ctx.can_backdate is False


class TestNormalizeIds:
    def test_dedupes_preserving_order(self):
        from assets.services.scope import normalize_ids

        assert normalize_ids([3, "1", 3, 2, "1"]) == [3, 1, 2]

    def test_empty(self):
        from assets.services.scope import normalize_ids

        assert normalize_ids(None) == []

    def test_garbage_rejected(self):
        from assets.services.scope import normalize_ids

        with pytest.raises(ValidationError, match="not a valid identifier"):
            normalize_ids(["abc"])


class TestGuardAssets:
    def test_returns_assets_in_request_order(self, ctx, asset, second_asset):
        from assets.services.scope import guard_assets

        result = guard_assets(ctx, [second_asset.pk, asset.pk])
        assert result == [second_asset, asset]

    def test_foreign_asset_rejected(self, ctx, asset, other_asset):
        from assets.services.scope import guard_assets

        with pytest.raises(AuthorizationError, match="another organisation"):
            guard_assets(ctx, [asset.pk, other_asset.pk])

    def test_unknown_asset_rejected(self, ctx, asset):
        from assets.services.scope import guard_assets

        with pytest.raises(ValidationError, match="Unknown asset"):
            guard_assets(ctx, [asset.pk, asset.pk + 1000])

    def test_locking_read_returns_same_rows(self, ctx, asset, second_asset):
        from assets.services.scope import guard_assets

        result = guard_assets(
            ctx, [second_asset.pk, asset.pk], for_update=True
        )
        assert [a.pk for a in result] == [second_asset.pk, asset.pk]


class TestGuardBooking:
    def test_own_booking(self, ctx, organization, asset):
        from assets.services.scope import guard_booking

        booking = BookingFactory(organization=organization, assets=[asset])
        assert guard_booking(ctx, booking.pk) == booking

    def test_foreign_booking_rejected(self, ctx, other_organization):
        from assets.services.scope import guard_booking

        booking = BookingFactory(organization=other_organization)
        with pytest.raises(AuthorizationError):
            guard_booking(ctx, booking.pk)

    def test_deleted_booking_invisible(self, ctx, organization, day):
        from assets.services.scope import guard_booking

        booking = BookingFactory(
            organization=organization, status="draft", deleted_at=day
        )
        with pytest.raises(Booking.DoesNotExist):
            guard_booking(ctx, booking.pk)


class TestGuardCustodianAndTags:
    def test_custodian_must_be_member(self, ctx, other_user):
        from assets.services.scope import guard_custodian

        with pytest.raises(AuthorizationError):
            guard_custodian(ctx, other_user.pk)

    def test_member_custodian(self, ctx, member_user):
        from assets.services.scope import guard_custodian

        assert guard_custodian(ctx, member_user.pk) == member_user

    def test_no_custodian(self, ctx):
        from assets.services.scope import guard_custodian

        assert guard_custodian(ctx, None) is None

    def test_foreign_tag_rejected(self, ctx, other_organization):
        from assets.services.scope import guard_tags

        tag = TagFactory(organization=other_organization)
        with pytest.raises(AuthorizationError):
            guard_tags(ctx, [tag.pk])


class TestScopedQuerysets:
    def test_bookings_scoped_and_alive(
        self, ctx, organization, other_organization, day
    ):
        from assets.services.scope import scoped_bookings

        mine = BookingFactory(organization=organization)
        BookingFactory(organization=other_organization)
        BookingFactory(
            organization=organization, status="cancelled", deleted_at=day
        )
        assert list(scoped_bookings(ctx)) == [mine]

    def test_assets_scoped(self, ctx, organization, other_organization):
        from assets.services.scope import scoped_assets

        mine = AssetFactory(organization=organization)
        AssetFactory(organization=other_organization)
        assert list(scoped_assets(ctx)) == [mine]

    def test_membership_in_two_orgs_stays_separate(
        self, organization, other_organization
    ):
        from assets.services.scope import actor_context_for, scoped_assets

        user = UserFactory()
        MembershipFactory(user=user, organization=organization)
        MembershipFactory(user=user, organization=other_organization)
        AssetFactory(organization=organization, name="Ours")
        AssetFactory(organization=other_organization, name="Theirs")

        ctx = actor_context_for(user, other_organization.pk)
        assert [a.name for a in scoped_assets(ctx)] == ["Theirs"]

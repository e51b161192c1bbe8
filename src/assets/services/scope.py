"""Organisation scope guard.

Every core entry point receives an ``ActorContext`` built from the
actor's membership. The organisation always comes from the membership,
never from request payload, and every row a caller references is checked
against it before use.
"""

import logging
from dataclasses import dataclass

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError

from accounts.models import Membership

from ..exceptions import AuthorizationError
from ..models import Asset, Booking, Tag

logger = logging.getLogger(__name__)

User = get_user_model()


@dataclass(frozen=True)
class ActorContext:
    """The acting user and the organisation they act within."""

    user: User
    organization_id: int
    role: str

    @property
    def user_id(self):
        return getattr(self.user, "pk", None)

    @property
    def can_backdate(self) -> bool:
        return self.role in settings.BOOKING_BACKDATE_ROLES


def actor_context_for(user, organization_id) -> ActorContext:
    """Build the context for ``user`` acting in ``organization_id``.

    Raises AuthorizationError if the user is not a member.
    """
    membership = (
        Membership.objects.filter(user=user, organization_id=organization_id)
        .only("organization_id", "role")
        .first()
    )
    if membership is None:
        raise AuthorizationError(
            "You are not a member of this organisation."
        )
    return ActorContext(
        user=user,
        organization_id=membership.organization_id,
        role=membership.role,
    )


def normalize_ids(ids) -> list[int]:
    """Coerce ids to ints, dropping duplicates but keeping order."""
    result = []
    seen = set()
    for raw in ids or []:
        try:
            value = int(raw)
        except (TypeError, ValueError):
            raise ValidationError(f"'{raw}' is not a valid identifier.")
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


def scoped_bookings(ctx: ActorContext):
    """Live bookings of the actor's organisation."""
    return Booking.objects.alive().for_organization(ctx.organization_id)


def scoped_assets(ctx: ActorContext):
    return Asset.objects.filter(organization_id=ctx.organization_id)


def _reject_foreign(ctx, label, foreign_ids):
    logger.warning(
        "User %s in organisation %s referenced foreign %s(s) %s",
        ctx.user_id,
        ctx.organization_id,
        label,
        foreign_ids,
    )
    raise AuthorizationError(
        f"{label.capitalize()}(s) {', '.join(map(str, foreign_ids))} "
        f"belong to another organisation."
    )


def _guard_owned(ctx, model, ids, label, for_update=False):
    ids = normalize_ids(ids)
    if not ids:
        return []
    queryset = model.objects.filter(pk__in=ids)
    if for_update:
        # Lock in primary key order so concurrent writers cannot deadlock
        queryset = queryset.select_for_update().order_by("pk")
    found = {obj.pk: obj for obj in queryset}

    foreign = sorted(
        pk
        for pk, obj in found.items()
        if obj.organization_id != ctx.organization_id
    )
    if foreign:
        _reject_foreign(ctx, label, foreign)

    missing = [pk for pk in ids if pk not in found]
    if missing:
        raise ValidationError(
            f"Unknown {label} id(s): {', '.join(map(str, missing))}."
        )
    return [found[pk] for pk in ids]


def guard_assets(ctx: ActorContext, asset_ids, for_update=False):
    """Return the referenced assets in request order.

    With ``for_update`` the rows are locked for the rest of the
    surrounding transaction.
    """
    return _guard_owned(ctx, Asset, asset_ids, "asset", for_update)


def guard_tags(ctx: ActorContext, tag_ids):
    return _guard_owned(ctx, Tag, tag_ids, "tag")


def guard_booking(ctx: ActorContext, booking_id, for_update=False):
    """Load a live booking of the actor's organisation.

    ``Booking.DoesNotExist`` propagates for unknown or deleted ids.
    """
    queryset = Booking.objects.alive()
    if for_update:
        queryset = queryset.select_for_update()
    booking = queryset.get(pk=booking_id)
    if booking.organization_id != ctx.organization_id:
        _reject_foreign(ctx, "booking", [booking.pk])
    return booking


def guard_custodian(ctx: ActorContext, user_id):
    """Return the custodian user, who must belong to the organisation."""
    if user_id is None:
        return None
    membership = (
        Membership.objects.select_related("user")
        .filter(user_id=user_id, organization_id=ctx.organization_id)
        .first()
    )
    if membership is None:
        raise AuthorizationError(
            "The custodian must be a member of this organisation."
        )
    return membership.user

"""Factory Boy factories for Stockroom test data generation."""

from datetime import timedelta

import factory
from factory.django import DjangoModelFactory

from django.utils import timezone


class UserFactory(DjangoModelFactory):
    """Factory for CustomUser model."""

    class Meta:
        model = "accounts.CustomUser"
        skip_postgeneration_save = True

    username = factory.Sequence(lambda n: f"user{n}")
    email = factory.LazyAttribute(lambda o: f"{o.username}@example.com")
    display_name = factory.Faker("name")
    is_active = True

    @factory.post_generation
    def password(self, create, extracted, **kwargs):
        pwd = extracted or "testpass123!"
        self.set_password(pwd)
        if create:
            self.save(update_fields=["password"])


class OrganizationFactory(DjangoModelFactory):
    class Meta:
        model = "accounts.Organization"

    name = factory.Sequence(lambda n: f"Organisation {n}")
    slug = factory.Sequence(lambda n: f"org-{n}")


class MembershipFactory(DjangoModelFactory):
    class Meta:
        model = "accounts.Membership"

    user = factory.SubFactory(UserFactory)
    organization = factory.SubFactory(OrganizationFactory)
    role = "base"


class TagFactory(DjangoModelFactory):
    """Factory for Tag model."""

    class Meta:
        model = "assets.Tag"

    organization = factory.SubFactory(OrganizationFactory)
    name = factory.Sequence(lambda n: f"tag-{n}")
    color = "gray"


class AssetFactory(DjangoModelFactory):
    """Factory for Asset model."""

    class Meta:
        model = "assets.Asset"

    organization = factory.SubFactory(OrganizationFactory)
    name = factory.Sequence(lambda n: f"Asset {n}")
    available_to_book = True


class BookingFactory(DjangoModelFactory):
    """Factory for Booking model.

    Writes rows directly, skipping the booking services, so tests can
    set up any status. Pass ``assets=[...]`` to create reservation
    edges; their window and activity follow the booking.
    """

    class Meta:
        model = "assets.Booking"
        skip_postgeneration_save = True

    organization = factory.SubFactory(OrganizationFactory)
    name = factory.Sequence(lambda n: f"Booking {n}")
    status = "reserved"
    starts_at = factory.LazyFunction(
        lambda: timezone.now() + timedelta(days=1)
    )
    ends_at = factory.LazyAttribute(lambda o: o.starts_at + timedelta(hours=2))

    @factory.post_generation
    def assets(self, create, extracted, **kwargs):
        if not create or not extracted:
            return
        from .models import BookingAsset

        BookingAsset.objects.bulk_create(
            [
                BookingAsset(
                    booking=self,
                    asset=asset,
                    position=position,
                    starts_at=self.starts_at,
                    ends_at=self.ends_at,
                )
                for position, asset in enumerate(extracted)
            ]
        )
        self.sync_edges()

    @factory.post_generation
    def tags(self, create, extracted, **kwargs):
        if create and extracted:
            self.tags.set(extracted)

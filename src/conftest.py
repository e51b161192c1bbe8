"""Shared pytest fixtures for Stockroom tests."""

from datetime import timedelta
from datetime import timezone as dt_timezone

import pytest

from django.conf import settings
from django.utils import timezone

# Run Celery tasks synchronously in tests
settings.CELERY_TASK_ALWAYS_EAGER = True
settings.CELERY_TASK_EAGER_PROPAGATES = True

# Use in-memory cache for tests (avoids Redis connection errors)
settings.CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
    }
}


@pytest.fixture(autouse=True)
def _clear_cache():
    """Clear the in-memory cache before each test.

    Prevents bulk cancel flags from bleeding across tests.
    """
    from django.core.cache import cache

    cache.clear()


from assets.factories import (  # noqa: E402
    AssetFactory,
    MembershipFactory,
    OrganizationFactory,
    TagFactory,
    UserFactory,
)
from assets.services.overlap import Window  # noqa: E402
from assets.services.scope import ActorContext  # noqa: E402

# --- Organisation and user fixtures ---


@pytest.fixture
def password():
    return "testpass123!"


@pytest.fixture
def organization(db):
    return OrganizationFactory(name="Lighthouse Theatre", slug="lighthouse")


@pytest.fixture
def other_organization(db):
    return OrganizationFactory(name="Harbour Studios", slug="harbour")


@pytest.fixture
def owner_user(organization, password):
    u = UserFactory(
        username="owner",
        email="owner@example.com",
        password=password,
        display_name="Olive Owner",
    )
    MembershipFactory(user=u, organization=organization, role="owner")
    return u


@pytest.fixture
def member_user(organization, password):
    u = UserFactory(
        username="member",
        email="member@example.com",
        password=password,
        display_name="Milo Member",
    )
    MembershipFactory(user=u, organization=organization, role="base")
    return u


@pytest.fixture
def other_user(other_organization, password):
    u = UserFactory(
        username="outsider",
        email="outsider@example.com",
        password=password,
        display_name="Oscar Outsider",
    )
    MembershipFactory(user=u, organization=other_organization, role="owner")
    return u


@pytest.fixture
def admin_user(organization, password):
    u = UserFactory(
        username="admin",
        email="admin@example.com",
        password=password,
        is_staff=True,
        is_superuser=True,
    )
    MembershipFactory(user=u, organization=organization, role="admin")
    return u


@pytest.fixture
def admin_client(client, admin_user, password):
    client.login(username=admin_user.username, password=password)
    return client


# --- Actor contexts ---


@pytest.fixture
def ctx(owner_user, organization):
    return ActorContext(
        user=owner_user, organization_id=organization.pk, role="owner"
    )


@pytest.fixture
def member_ctx(member_user, organization):
    return ActorContext(
        user=member_user, organization_id=organization.pk, role="base"
    )


@pytest.fixture
def other_ctx(other_user, other_organization):
    return ActorContext(
        user=other_user,
        organization_id=other_organization.pk,
        role="owner",
    )


# --- Core model fixtures ---


@pytest.fixture
def tag(organization):
    return TagFactory(organization=organization, name="lighting", color="red")


@pytest.fixture
def asset(organization):
    return AssetFactory(organization=organization, name="Fresnel 650W")


@pytest.fixture
def second_asset(organization):
    return AssetFactory(organization=organization, name="Tripod")


@pytest.fixture
def other_asset(other_organization):
    return AssetFactory(organization=other_organization, name="Foreign Lamp")


# --- Time anchors ---


@pytest.fixture
def day():
    """Midnight UTC a week from now; test windows are laid out from it."""
    today = timezone.now().astimezone(dt_timezone.utc)
    midnight = today.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight + timedelta(days=7)


@pytest.fixture
def at(day):
    """``at(9.5)`` is 09:30 UTC on ``day``."""

    def _at(hours):
        return day + timedelta(hours=hours)

    return _at


@pytest.fixture
def window(at):
    def _window(start, end):
        return Window(at(start), at(end))

    return _window

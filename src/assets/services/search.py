"""Free-text search helpers for bookings and assets."""

from django.db.models import Q

MAX_SEARCH_WORDS = 20


def _split_words(q):
    return (q or "").split()[:MAX_SEARCH_WORDS]


def search_bookings(queryset, q):
    """Filter bookings matching all words in q.

    Each word must appear in at least one of: booking name, description,
    custodian name, an asset name, or a tag name. Words are ANDed, and
    each word gets its own join so "tripod canon" matches a booking
    holding a tripod and a Canon body.

    At most ``MAX_SEARCH_WORDS`` words are considered; additional words
    are silently ignored to bound query complexity.
    """
    for word in _split_words(q):
        queryset = queryset.filter(
            Q(name__icontains=word)
            | Q(description__icontains=word)
            | Q(custodian__display_name__icontains=word)
            | Q(assets__name__icontains=word)
            | Q(tags__name__icontains=word)
        )
    return queryset.distinct()


def search_assets(queryset, q):
    """Filter assets whose name, description or tags match all words."""
    for word in _split_words(q):
        queryset = queryset.filter(
            Q(name__icontains=word)
            | Q(description__icontains=word)
            | Q(tags__name__icontains=word)
        )
    return queryset.distinct()

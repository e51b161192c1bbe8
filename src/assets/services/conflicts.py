"""Booking conflict detection.

Every requested asset is checked independently against the overlap
index and receives its own verdict. A request is acceptable only when
every verdict is clear; reserving just the clear subset is never done.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime

from django.core.exceptions import ValidationError
from django.db import IntegrityError
from django.db import transaction as db_transaction

from ..exceptions import ConflictError
from .overlap import Window, active_edges_overlapping
from .scope import ActorContext, guard_assets, normalize_ids

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Collision:
    """An active booking already holding an asset during the window."""

    asset_id: int
    asset_name: str
    booking_id: int
    booking_name: str
    status: str
    starts_at: datetime
    ends_at: datetime

    def describe(self) -> str:
        window = Window(self.starts_at, self.ends_at).describe()
        return (
            f"'{self.asset_name}' is already booked by "
            f"'{self.booking_name}' (#{self.booking_id}) from {window}."
        )

    def to_dict(self) -> dict:
        return {
            "booking_id": self.booking_id,
            "booking_name": self.booking_name,
            "status": self.status,
            "starts_at": self.starts_at.isoformat(),
            "ends_at": self.ends_at.isoformat(),
        }


@dataclass
class AssetVerdict:
    asset_id: int
    asset_name: str
    collisions: list = field(default_factory=list)

    @property
    def status(self) -> str:
        return "conflict" if self.collisions else "clear"

    @property
    def is_clear(self) -> bool:
        return not self.collisions

    def booking_ids(self) -> list[int]:
        return [c.booking_id for c in self.collisions]


@dataclass
class ConflictReport:
    """Per-asset verdicts for one requested window, in request order."""

    window: Window
    verdicts: dict = field(default_factory=dict)

    @property
    def is_clear(self) -> bool:
        return all(v.is_clear for v in self.verdicts.values())

    def conflicting(self) -> list[AssetVerdict]:
        return [v for v in self.verdicts.values() if not v.is_clear]

    def collisions(self) -> list[Collision]:
        return [c for v in self.verdicts.values() for c in v.collisions]

    def to_dict(self) -> dict:
        return {
            str(asset_id): {
                "status": verdict.status,
                "collisions": [c.to_dict() for c in verdict.collisions],
            }
            for asset_id, verdict in self.verdicts.items()
        }


def check_conflicts(
    ctx: ActorContext, asset_ids, window: Window, booking_id=None
) -> ConflictReport:
    """Return a verdict for every requested asset.

    ``booking_id`` is the booking being created or edited (None on
    create); its own edges are ignored.
    """
    ids = normalize_ids(asset_ids)
    if not ids:
        raise ValidationError("A booking needs at least one asset.")
    assets = guard_assets(ctx, ids)

    report = ConflictReport(
        window=window,
        verdicts={
            asset.pk: AssetVerdict(asset_id=asset.pk, asset_name=asset.name)
            for asset in assets
        },
    )
    edges = (
        active_edges_overlapping(ids, window, exclude_booking_id=booking_id)
        .select_related("booking", "asset")
        .order_by("starts_at", "pk")
    )
    for edge in edges:
        report.verdicts[edge.asset_id].collisions.append(
            Collision(
                asset_id=edge.asset_id,
                asset_name=edge.asset.name,
                booking_id=edge.booking_id,
                booking_name=edge.booking.name,
                status=edge.booking.status,
                starts_at=edge.starts_at,
                ends_at=edge.ends_at,
            )
        )

    if not report.is_clear:
        logger.info(
            "Conflict for booking %s in organisation %s on asset(s) %s",
            booking_id,
            ctx.organization_id,
            [v.asset_id for v in report.conflicting()],
        )
    return report


def ensure_no_conflicts(
    ctx: ActorContext, asset_ids, window: Window, booking_id=None
) -> ConflictReport:
    """Raise ConflictError unless every asset is clear."""
    report = check_conflicts(ctx, asset_ids, window, booking_id=booking_id)
    if not report.is_clear:
        raise ConflictError(report)
    return report


@contextmanager
def overlap_violation_as_conflict(
    ctx: ActorContext, asset_ids, window: Window, booking_id=None
):
    """Translate a store-level overlap rejection into ConflictError.

    The write runs in a savepoint; if the database exclusion constraint
    rejects it, the detector is re-run to build the report.
    """
    try:
        with db_transaction.atomic():
            yield
    except IntegrityError:
        report = check_conflicts(ctx, asset_ids, window, booking_id=booking_id)
        if report.is_clear:
            raise
        raise ConflictError(report)

"""Management command to audit active bookings for overlapping windows.

Scans every active reservation edge and reports pairs of active bookings
that hold the same asset over intersecting windows. A clean store
prints a success message; any overlap makes the command fail.
"""

from django.core.management.base import BaseCommand, CommandError

from assets.services.overlap import Window, find_overlapping_pairs


class Command(BaseCommand):
    help = (
        "Report active bookings that hold the same asset over "
        "overlapping windows."
    )

    def add_arguments(self, parser):
        parser.add_argument(
            "--organization",
            type=int,
            default=None,
            help="Only audit bookings of this organisation id.",
        )

    def handle(self, *args, **options):
        organization_id = options.get("organization")
        pairs = find_overlapping_pairs(organization_id)

        if not pairs:
            self.stdout.write(
                self.style.SUCCESS("No overlapping active bookings found.")
            )
            return

        for first, second in pairs:
            self.stdout.write(
                self.style.ERROR(
                    f"Asset {first.asset_id}: booking {first.booking_id} "
                    f"({Window(first.starts_at, first.ends_at).describe()}) "
                    f"overlaps booking {second.booking_id} "
                    f"({Window(second.starts_at, second.ends_at).describe()})"
                )
            )
        raise CommandError(f"{len(pairs)} overlapping pair(s) found.")

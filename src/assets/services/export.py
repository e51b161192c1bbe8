"""Excel export service for bookings."""

from datetime import timezone as dt_timezone
from io import BytesIO

import openpyxl
from openpyxl.styles import Font, PatternFill

from django.conf import settings
from django.db.models import Count

from ..models import Booking

# Threshold above which .iterator() is used for memory efficiency
ITERATOR_THRESHOLD = 1000
ITERATOR_CHUNK_SIZE = 1000

BOOKING_HEADERS = [
    "ID",
    "Name",
    "Status",
    "Starts (UTC)",
    "Ends (UTC)",
    "Assets",
    "Custodian",
    "Tags",
    "Created By",
    "Created Date",
]


def _naive_utc(value):
    # openpyxl cannot store timezone-aware datetimes
    if value is None:
        return ""
    return value.astimezone(dt_timezone.utc).replace(tzinfo=None)


def export_bookings_xlsx(queryset) -> BytesIO:
    """Export bookings to an Excel workbook.

    Returns a BytesIO containing the .xlsx file, with a Summary sheet
    (counts per status) and one row per booking on a Bookings sheet.
    """
    queryset = queryset.select_related(
        "custodian", "created_by"
    ).prefetch_related("assets", "tags")

    wb = openpyxl.Workbook()

    ws_summary = wb.active
    ws_summary.title = "Summary"
    header_font = Font(bold=True)
    header_fill = PatternFill(
        start_color="F59E0B", end_color="F59E0B", fill_type="solid"
    )

    total_count = queryset.count()
    by_status = dict(
        queryset.order_by()
        .values_list("status")
        .annotate(n=Count("pk", distinct=True))
    )

    ws_summary.append([f"{settings.SITE_NAME} Booking Export"])
    ws_summary["A1"].font = Font(bold=True, size=14)
    ws_summary.append([])
    ws_summary.append(["Total Bookings", total_count])
    for status, label in Booking.STATUS_CHOICES:
        ws_summary.append([label, by_status.get(status, 0)])

    ws_bookings = wb.create_sheet("Bookings")
    ws_bookings.append(BOOKING_HEADERS)
    for col_idx, _header in enumerate(BOOKING_HEADERS, 1):
        cell = ws_bookings.cell(row=1, column=col_idx)
        cell.font = header_font
        cell.fill = header_fill

    booking_iter = (
        queryset.iterator(chunk_size=ITERATOR_CHUNK_SIZE)
        if total_count > ITERATOR_THRESHOLD
        else queryset
    )
    for booking in booking_iter:
        ws_bookings.append(
            [
                booking.pk,
                booking.name,
                booking.get_status_display(),
                _naive_utc(booking.starts_at),
                _naive_utc(booking.ends_at),
                ", ".join(a.name for a in booking.assets.all()),
                (
                    booking.custodian.get_display_name()
                    if booking.custodian
                    else ""
                ),
                ", ".join(t.name for t in booking.tags.all()),
                (
                    booking.created_by.get_display_name()
                    if booking.created_by
                    else ""
                ),
                _naive_utc(booking.created_at),
            ]
        )

    # Auto-size columns
    for ws in [ws_summary, ws_bookings]:
        for column_cells in ws.columns:
            max_length = max(
                len(str(cell.value or "")) for cell in column_cells
            )
            ws.column_dimensions[column_cells[0].column_letter].width = min(
                max_length + 2, 50
            )

    buffer = BytesIO()
    wb.save(buffer)
    buffer.seek(0)
    return buffer

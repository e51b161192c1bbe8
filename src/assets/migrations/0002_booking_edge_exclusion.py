"""Reject overlapping active reservation edges at the database level.

PostgreSQL only: other backends rely on row locks taken by the booking
services.
"""

from django.db import migrations

CONSTRAINT_NAME = "exclude_overlapping_active_edges"


def add_exclusion_constraint(apps, schema_editor):
    if schema_editor.connection.vendor != "postgresql":
        return
    BookingAsset = apps.get_model("assets", "BookingAsset")
    table = schema_editor.quote_name(BookingAsset._meta.db_table)
    schema_editor.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
    schema_editor.execute(
        f"ALTER TABLE {table} ADD CONSTRAINT {CONSTRAINT_NAME} "
        f"EXCLUDE USING gist ("
        f"asset_id WITH =, "
        f"tstzrange(starts_at, ends_at, '[)') WITH &&"
        f") WHERE (is_active)"
    )


def drop_exclusion_constraint(apps, schema_editor):
    if schema_editor.connection.vendor != "postgresql":
        return
    BookingAsset = apps.get_model("assets", "BookingAsset")
    table = schema_editor.quote_name(BookingAsset._meta.db_table)
    schema_editor.execute(
        f"ALTER TABLE {table} DROP CONSTRAINT IF EXISTS {CONSTRAINT_NAME}"
    )


class Migration(migrations.Migration):

    dependencies = [
        ("assets", "0001_initial"),
    ]

    operations = [
        migrations.RunPython(
            add_exclusion_constraint,
            drop_exclusion_constraint,
        ),
    ]

"""Celery tasks for the assets app."""

import logging

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(bind=True)
def run_bulk_operation(
    self,
    organization_id: int,
    user_id: int,
    selection: dict,
    operation: str,
    target_status: str = None,
    kind: str = "booking",
):
    """Run a bulk operation outside the request cycle.

    ``selection`` is a selection payload (``{"ids": [...]}`` or
    ``{"all": true, "filter": {...}}``), resolved when the task runs.
    The task can be stopped between items with ``request_bulk_cancel``.
    Returns the outcome as a dict.
    """
    from django.contrib.auth import get_user_model
    from django.core.exceptions import ValidationError

    from .services.bulk import (
        CacheCancelToken,
        execute_asset_bulk,
        execute_bulk,
    )
    from .services.scope import actor_context_for
    from .services.selection import Selection

    if operation == "export":
        raise ValidationError(
            "Exports are produced in the request, not in the background."
        )

    user = get_user_model().objects.get(pk=user_id)
    ctx = actor_context_for(user, organization_id)
    token = CacheCancelToken(self.request.id)
    parsed = Selection.from_payload(selection)

    logger.info(
        "Starting background bulk %s (%s) for user %s in organisation %s",
        operation,
        kind,
        user_id,
        organization_id,
    )
    if kind == "asset":
        outcome = execute_asset_bulk(
            ctx, parsed, operation, cancel_token=token
        )
    else:
        outcome = execute_bulk(
            ctx,
            parsed,
            operation,
            target_status=target_status,
            cancel_token=token,
        )
    return outcome.to_dict()


def request_bulk_cancel(task_id):
    """Ask a running ``run_bulk_operation`` task to stop after its
    current item."""
    from .services.bulk import CacheCancelToken

    CacheCancelToken(task_id).set()
    logger.info("Cancellation requested for bulk task %s", task_id)

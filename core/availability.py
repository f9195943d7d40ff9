"""
Bicycle availability store.

The bicycle row is the mutual-exclusion point for everything that reserves or
sells a bicycle. Callers take the row lock with `locked_bicycle()` and move the
listing between states with `transition()`; both are bound to the enclosing
database transaction, so the lock is released on commit or rollback.

Lock order across the workflow is Bicycle -> Order -> Payment -> Messages.
"""

import logging
from contextlib import contextmanager

from django.db import transaction

from .exceptions import BicycleStateConflictError, ForbiddenError, NotFoundError
from .models import Bicycle

logger = logging.getLogger(__name__)


@contextmanager
def locked_bicycle(bicycle_id):
    """
    Open (or join) a transaction and hold the bicycle row lock inside it.

    Usage:
        with locked_bicycle(bicycle_id) as bicycle:
            ...

    Args:
        bicycle_id: Primary key of the bicycle

    Yields:
        Bicycle: The freshly read, locked bicycle

    Raises:
        NotFoundError: If the bicycle does not exist
    """
    with transaction.atomic():
        try:
            bicycle = Bicycle.objects.select_for_update().get(pk=bicycle_id)
        except (Bicycle.DoesNotExist, ValueError, TypeError):
            raise NotFoundError('Bicycle not found.', code='bicycle_not_found')
        yield bicycle


def transition(bicycle, from_status, to_status):
    """
    Move a locked bicycle from one status to another.

    Must run inside the transaction that holds the bicycle lock. The write is a
    guarded UPDATE ... WHERE status = from_status, so a stale caller can never
    overwrite a newer state.

    Args:
        bicycle: Bicycle returned by locked_bicycle()
        from_status: Status the caller expects the bicycle to be in
        to_status: Target status

    Returns:
        Bicycle: The same instance with status updated

    Raises:
        RuntimeError: If called outside a transaction
        BicycleStateConflictError: If the expected status does not hold or the
            transition is not allowed
    """
    if not transaction.get_connection().in_atomic_block:
        raise RuntimeError('Bicycle transitions must run inside transaction.atomic().')

    if bicycle.status != from_status:
        logger.warning(
            f"Bicycle transition refused. Bicycle ID: {bicycle.pk}, "
            f"Expected: {from_status}, Actual: {bicycle.status}, Target: {to_status}"
        )
        raise BicycleStateConflictError(
            f'Bicycle is {bicycle.status}, expected {from_status}.',
            current_status=bicycle.status,
        )

    if not bicycle.can_transition_to(to_status):
        logger.warning(
            f"Invalid bicycle transition. Bicycle ID: {bicycle.pk}, "
            f"From: {from_status}, To: {to_status}"
        )
        raise BicycleStateConflictError(
            f'Cannot change bicycle status from {from_status} to {to_status}.',
            current_status=bicycle.status,
        )

    updated = Bicycle.objects.filter(pk=bicycle.pk, status=from_status).update(status=to_status)
    if updated != 1:
        current = Bicycle.objects.filter(pk=bicycle.pk).values_list('status', flat=True).first()
        logger.warning(
            f"Bicycle status changed concurrently. Bicycle ID: {bicycle.pk}, "
            f"Expected: {from_status}, Stored: {current}, Target: {to_status}"
        )
        raise BicycleStateConflictError(
            f'Bicycle status changed concurrently (now {current}).',
            current_status=current,
        )

    bicycle.status = to_status
    logger.info(
        f"Bicycle status changed. Bicycle ID: {bicycle.pk}, From: {from_status}, To: {to_status}"
    )
    return bicycle


def approve_listing(bicycle_id, admin):
    """
    Publish a listing that is awaiting review (pending -> available).

    Args:
        bicycle_id: Primary key of the bicycle
        admin: Acting user; must be staff or superuser

    Returns:
        Bicycle: The approved bicycle

    Raises:
        ForbiddenError: If the acting user is not an admin
        NotFoundError: If the bicycle does not exist
        BicycleStateConflictError: If the listing is not pending review
    """
    if not getattr(admin, 'is_admin', False):
        raise ForbiddenError('Only administrators can approve listings.')

    with locked_bicycle(bicycle_id) as bicycle:
        transition(bicycle, Bicycle.Status.PENDING, Bicycle.Status.AVAILABLE)

    logger.info(f"Listing approved. Bicycle ID: {bicycle.pk}, Admin ID: {admin.pk}")
    return bicycle

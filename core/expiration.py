"""
Expiration sweeper for unpaid orders.

Cancels orders whose payment deadline has passed without a transfer being
submitted, and puts their bicycles back on the market. Meant to be run
periodically (see the cancel_expired_orders management command); safe to run
repeatedly and concurrently with live requests.
"""

import logging

from django.utils import timezone

from .availability import transition
from .conf import marketplace_setting
from .exceptions import NotFoundError
from .metrics import get_metrics_backend
from .models import Bicycle, Order, OrderPayment
from .orders import locked_order
from .signals import notify_after_commit, order_expired

logger = logging.getLogger(__name__)

EXPIRED_REASON = 'Payment deadline expired'


class ExpirationSweeper:
    """
    Args:
        metrics: WorkflowMetrics backend (defaults to the configured backend)
    """

    def __init__(self, metrics=None):
        self.metrics = metrics if metrics is not None else get_metrics_backend()

    def find_expired_orders(self, now=None):
        """
        Orders that are still pending with a pending payment past expires_at.

        Orders whose buyer already submitted proof (payment awaiting
        confirmation) are left for the admin to review.
        """
        now = now or timezone.now()
        return Order.objects.filter(
            status=Order.Status.PENDING,
            payment__status=OrderPayment.Status.PENDING,
            expires_at__lt=now,
        ).order_by('expires_at', 'pk')

    def cancel_expired_orders(self, now=None, batch_size=None, dry_run=False):
        """
        Cancel every expired unpaid order.

        Each order is handled in its own transaction (bicycle lock, then order
        and payment locks) and the expiry conditions are re-checked under the
        lock, so an order paid or cancelled in the meantime is skipped. A
        failure on one order is logged and does not stop the sweep.

        Args:
            now: Reference time (defaults to timezone.now())
            batch_size: Orders fetched per query (defaults to SWEEPER_BATCH_SIZE)
            dry_run: Only count the orders that would be cancelled

        Returns:
            int: Number of orders cancelled (or that would be, for a dry run)
        """
        now = now or timezone.now()
        batch_size = batch_size or marketplace_setting('SWEEPER_BATCH_SIZE')

        if dry_run:
            expired = self.find_expired_orders(now).count()
            logger.info(f"Expiration sweep dry run. Expired orders: {expired}")
            return expired

        candidates = 0
        processed = 0
        failed = 0
        last_pk = 0
        while True:
            order_ids = self._next_batch(now, last_pk, batch_size)
            if not order_ids:
                break
            candidates += len(order_ids)
            for order_id in order_ids:
                try:
                    if self._expire_order(order_id, now):
                        processed += 1
                except Exception as e:
                    failed += 1
                    logger.error(
                        f"Failed to cancel expired order. Order ID: {order_id}, Error: {e}",
                        exc_info=True
                    )
            last_pk = order_ids[-1]

        logger.info(
            f"Expiration sweep finished. Candidates: {candidates}, "
            f"Cancelled: {processed}, Failed: {failed}"
        )
        self.metrics.increment('orders.expired', processed)
        if failed:
            self.metrics.increment('orders.expire_failed', failed)
        return processed

    def _next_batch(self, now, after_pk, batch_size):
        """Ids of the next batch_size expired orders with pk > after_pk."""
        return list(
            self.find_expired_orders(now)
            .filter(pk__gt=after_pk)
            .order_by('pk')
            .values_list('pk', flat=True)[:batch_size]
        )

    def _expire_order(self, order_id, now):
        """Cancel one order if it is still expired. Returns True if cancelled."""
        try:
            with locked_order(order_id) as (order, payment):
                still_expired = (
                    order.status == Order.Status.PENDING
                    and payment.status == OrderPayment.Status.PENDING
                    and order.expires_at < now
                )
                if not still_expired:
                    logger.info(
                        f"Skipping order no longer expired. Order ID: {order_id}, "
                        f"Status: {order.status}, Payment status: {payment.status}"
                    )
                    return False

                bicycle = order.bicycle
                if bicycle.status == Bicycle.Status.RESERVED:
                    transition(bicycle, Bicycle.Status.RESERVED, Bicycle.Status.AVAILABLE)

                order.status = Order.Status.CANCELLED
                order.cancel_reason = EXPIRED_REASON
                order.cancelled_at = now
                order.save()

                payment.status = OrderPayment.Status.FAILED
                payment.failure_reason = EXPIRED_REASON
                payment.failed_at = now
                payment.save()

                logger.info(
                    f"Expired order cancelled. Order ID: {order.pk}, Bicycle ID: {bicycle.pk}, "
                    f"Bicycle status: {bicycle.status}"
                )
        except NotFoundError:
            # Deleted since the candidate query
            return False

        notify_after_commit(order_expired, sender=self.__class__, order=order, reason=EXPIRED_REASON)
        return True

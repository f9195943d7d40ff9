"""
Order and payment workflow.

Orders reserve a bicycle until the buyer's bank transfer is confirmed and an
admin settles the sale:

    create_order -> (submit_payment_proof -> review_payment_proof)
                 -> admin_approve_sale | admin_reject_sale
    cancel_order / expiry sweep release the bicycle before payment.

Every operation runs in one transaction holding the bicycle row lock, then the
order and payment row locks, and checks every precondition before its first
write.
"""

import logging
import time
from contextlib import contextmanager
from datetime import timedelta

from django.core.exceptions import ValidationError
from django.db import IntegrityError
from django.utils import timezone

from .availability import locked_bicycle, transition
from .conf import marketplace_setting
from .exceptions import (
    BicycleStateConflictError,
    BicycleUnavailableError,
    ForbiddenError,
    InputValidationError,
    InvalidStateError,
    NotFoundError,
    PreconditionFailedError,
    SelfTradeError,
)
from .metrics import get_metrics_backend
from .models import Bicycle, Order, OrderPayment
from .pricing import calculate_order_price
from .signals import (
    notify_after_commit,
    order_cancelled,
    order_created,
    payment_proof_submitted,
    payment_reviewed,
    sale_approved,
    sale_rejected,
)
from .validators import (
    sanitize_shipping_address,
    validate_account_last_five,
    validate_delivery_address,
    validate_payment_proof,
)

logger = logging.getLogger(__name__)


def build_payment_instructions(order):
    """
    Bank transfer instructions shown to the buyer.

    Args:
        order: Order with total_price and payment_deadline set

    Returns:
        dict: JSON-serializable instructions
    """
    instructions = dict(marketplace_setting('BANK_TRANSFER'))
    instructions.update({
        'amount': str(order.total_price),
        'reference': order.order_number,
        'deadline': order.payment_deadline.isoformat(),
        'note': (
            f"Please complete the transfer within {marketplace_setting('PAYMENT_WINDOW_DAYS')} days "
            f"and keep the receipt as proof of payment. Unpaid orders are cancelled automatically."
        ),
    })
    return instructions


@contextmanager
def locked_order(order_id):
    """
    Lock an order's bicycle, then the order, then its payment.

    Yields:
        tuple: (order, payment); order.bicycle and order.payment are the locked
            instances

    Raises:
        NotFoundError: If the order or its payment does not exist
    """
    bicycle_id = Order.objects.filter(pk=order_id).values_list('bicycle_id', flat=True).first()
    if bicycle_id is None:
        raise NotFoundError('Order not found.', code='order_not_found')

    with locked_bicycle(bicycle_id) as bicycle:
        order = Order.objects.select_for_update().filter(pk=order_id).first()
        if order is None:
            raise NotFoundError('Order not found.', code='order_not_found')
        payment = OrderPayment.objects.select_for_update().filter(order_id=order.pk).first()
        if payment is None:
            raise NotFoundError('Payment not found for this order.', code='payment_not_found')
        order.bicycle = bicycle
        order.payment = payment
        yield order, payment


class OrderWorkflow:
    """
    Service object for order, payment and settlement operations.

    Args:
        metrics: WorkflowMetrics backend (defaults to the configured backend)
    """

    def __init__(self, metrics=None):
        self.metrics = metrics if metrics is not None else get_metrics_backend()

    # Creation

    def create_order(self, buyer, bicycle_id, order_params=None):
        """
        Create an order for a bicycle at its listing price and reserve the bicycle.

        Args:
            buyer: Acting user
            bicycle_id: Bicycle to buy
            order_params: dict with shipping_method, shipping_distance,
                shipping_address and payment_method (all optional)

        Returns:
            Order: The new pending order (with its pending payment)

        Raises:
            InputValidationError: Invalid shipping or payment parameters
            NotFoundError: Bicycle does not exist
            SelfTradeError: Buyer owns the bicycle
            BicycleUnavailableError: Bicycle is not available (or was reserved
                by a concurrent request)
        """
        params = self.clean_order_params(order_params or {})
        started = time.monotonic()

        try:
            with locked_bicycle(bicycle_id) as bicycle:
                if bicycle.seller_id == buyer.pk:
                    logger.warning(
                        f"Self-purchase refused. Bicycle ID: {bicycle.pk}, User ID: {buyer.pk}"
                    )
                    raise SelfTradeError('You cannot buy your own bicycle.')

                if not bicycle.is_available():
                    logger.warning(
                        f"Order refused, bicycle not available. Bicycle ID: {bicycle.pk}, "
                        f"Status: {bicycle.status}, Buyer ID: {buyer.pk}"
                    )
                    self.metrics.increment('orders.conflict', reason='unavailable')
                    raise BicycleUnavailableError(current_status=bicycle.status)

                order = self.place_order(bicycle, buyer, bicycle.price, **params)
        except (IntegrityError, BicycleStateConflictError) as e:
            # Another transaction reserved the bicycle between our read and write
            logger.warning(
                f"Concurrent reservation detected. Bicycle ID: {bicycle_id}, "
                f"Buyer ID: {buyer.pk}, Error: {e}"
            )
            self.metrics.increment('orders.conflict', reason='race')
            raise BicycleUnavailableError()

        self.metrics.timing('orders.create', time.monotonic() - started)
        return order

    def clean_order_params(self, order_params):
        """
        Validate and normalize order parameters.

        Returns:
            dict: shipping_method, shipping_address, shipping_distance

        Raises:
            InputValidationError: If a parameter is invalid
        """
        shipping_method = order_params.get('shipping_method') or Order.ShippingMethod.ASSISTED_DELIVERY
        if shipping_method not in Order.ShippingMethod.values:
            raise InputValidationError(
                f'Invalid shipping method: {shipping_method}.',
                code='invalid_shipping_method',
                field='shipping_method',
            )

        payment_method = order_params.get('payment_method') or OrderPayment.Method.BANK_TRANSFER
        if payment_method not in OrderPayment.Method.values:
            raise InputValidationError(
                f'Invalid payment method: {payment_method}.',
                code='invalid_payment_method',
                field='payment_method',
            )
        if payment_method != OrderPayment.Method.BANK_TRANSFER:
            raise InputValidationError(
                'Only bank transfer is currently supported.',
                code='unsupported_payment_method',
                field='payment_method',
            )

        shipping_distance = order_params.get('shipping_distance')
        if shipping_distance is not None:
            try:
                shipping_distance = int(shipping_distance)
            except (TypeError, ValueError):
                shipping_distance = -1
            if shipping_distance < 0:
                raise InputValidationError(
                    'Shipping distance must be a non-negative integer.',
                    code='invalid_shipping_distance',
                    field='shipping_distance',
                )

        shipping_address = sanitize_shipping_address(order_params.get('shipping_address'))
        if shipping_method == Order.ShippingMethod.ASSISTED_DELIVERY:
            try:
                validate_delivery_address(shipping_address)
            except ValidationError as e:
                raise InputValidationError.from_django(e, field='shipping_address')

        return {
            'shipping_method': shipping_method,
            'shipping_address': shipping_address,
            'shipping_distance': shipping_distance,
        }

    def place_order(self, bicycle, buyer, subtotal, shipping_method, shipping_address=None,
                    shipping_distance=None, offer=None):
        """
        Reserve a locked bicycle and create the order and its payment.

        Must run inside the transaction holding the bicycle lock. Used by
        create_order and by offer acceptance.

        Returns:
            Order: The new pending order
        """
        price = calculate_order_price(subtotal, shipping_method, shipping_address)

        transition(bicycle, Bicycle.Status.AVAILABLE, Bicycle.Status.RESERVED)

        deadline = timezone.now() + timedelta(days=marketplace_setting('PAYMENT_WINDOW_DAYS'))
        order = Order(
            buyer=buyer,
            bicycle=bicycle,
            offer=offer,
            order_number=Order.generate_order_number(),
            status=Order.Status.PENDING,
            subtotal=price.subtotal,
            shipping_cost=price.shipping_cost,
            tax=price.tax,
            total_price=price.total_price,
            shipping_method=shipping_method,
            shipping_distance=shipping_distance,
            shipping_address=shipping_address or {},
            payment_deadline=deadline,
            expires_at=deadline,
        )
        order.save()

        payment = OrderPayment(
            order=order,
            status=OrderPayment.Status.PENDING,
            method=OrderPayment.Method.BANK_TRANSFER,
            amount=order.total_price,
            deadline=deadline,
            expires_at=deadline,
            instructions=build_payment_instructions(order),
        )
        payment.save()

        logger.info(
            f"Order created. Order: {order.order_number} (ID: {order.id}), "
            f"Bicycle ID: {bicycle.pk}, Buyer ID: {buyer.pk}, "
            f"Offer ID: {offer.pk if offer else None}, Total: {order.total_price}, "
            f"Deadline: {deadline.isoformat()}"
        )
        self.metrics.increment('orders.created', source='offer' if offer else 'direct')
        notify_after_commit(order_created, sender=self.__class__, order=order)
        return order

    # Pre-payment

    def cancel_order(self, order_id, acting_user, reason=''):
        """
        Cancel an unpaid order and release the bicycle.

        Only the buyer or an admin may cancel, and only while the order is
        pending and the payment has not been confirmed.

        Returns:
            Order: The cancelled order

        Raises:
            NotFoundError, ForbiddenError, InvalidStateError
        """
        with locked_order(order_id) as (order, payment):
            if not (acting_user.is_admin or order.buyer_id == acting_user.pk):
                logger.warning(
                    f"Unauthorized order cancellation. Order ID: {order.pk}, User ID: {acting_user.pk}"
                )
                raise ForbiddenError('Only the buyer or an administrator can cancel this order.')

            if order.status != Order.Status.PENDING:
                raise InvalidStateError(
                    f'Only pending orders can be cancelled (order is {order.status}).',
                    current_status=order.status,
                )

            cancellable = (OrderPayment.Status.PENDING, OrderPayment.Status.AWAITING_CONFIRMATION)
            if payment.status not in cancellable:
                raise InvalidStateError(
                    f'Orders cannot be cancelled once payment is {payment.status}.',
                    payment_status=payment.status,
                )

            reason = reason or 'Cancelled by buyer'
            self._release_bicycle(order.bicycle)
            self._cancel(order, reason)
            self._fail_payment(payment, reason)

            logger.info(
                f"Order cancelled. Order ID: {order.pk}, Bicycle ID: {order.bicycle_id}, "
                f"User ID: {acting_user.pk}, Reason: {reason}"
            )

        self.metrics.increment('orders.cancelled', actor='admin' if acting_user.is_admin else 'buyer')
        notify_after_commit(order_cancelled, sender=self.__class__, order=order, reason=reason)
        return order

    def submit_payment_proof(self, order_id, buyer, proof):
        """
        Record proof-of-transfer metadata and hand the payment to an admin.

        Args:
            order_id: Order being paid
            buyer: Acting user; must be the order's buyer
            proof: dict with content_type, size and optional filename, note,
                account_last_five

        Returns:
            OrderPayment: Payment in awaiting_confirmation

        Raises:
            InputValidationError: Invalid proof metadata
            NotFoundError, ForbiddenError, InvalidStateError
        """
        try:
            validate_payment_proof(proof.get('content_type'), proof.get('size'))
        except ValidationError as e:
            raise InputValidationError.from_django(e, field='proof')

        account_last_five = (proof.get('account_last_five') or '').strip()
        try:
            validate_account_last_five(account_last_five)
        except ValidationError as e:
            raise InputValidationError.from_django(e, field='account_last_five')

        now = timezone.now()
        with locked_order(order_id) as (order, payment):
            if order.buyer_id != buyer.pk:
                logger.warning(
                    f"Payment proof from non-buyer. Order ID: {order.pk}, User ID: {buyer.pk}"
                )
                raise ForbiddenError('Only the buyer can submit payment proof.')

            if order.status != Order.Status.PENDING or payment.status != OrderPayment.Status.PENDING:
                raise InvalidStateError(
                    'Payment proof can only be submitted for orders awaiting payment.',
                    current_status=order.status,
                    payment_status=payment.status,
                )

            if payment.is_expired(now):
                raise InvalidStateError(
                    'The payment deadline has passed.',
                    code='payment_deadline_passed',
                    payment_deadline=payment.deadline.isoformat(),
                )

            payment.status = OrderPayment.Status.AWAITING_CONFIRMATION
            payment.proof_status = OrderPayment.ProofStatus.PENDING
            payment.proof_filename = (proof.get('filename') or '')[:255]
            payment.proof_content_type = proof['content_type']
            payment.proof_size = proof['size']
            payment.proof_note = proof.get('note') or ''
            payment.proof_account_last_five = account_last_five
            payment.proof_uploaded_at = now
            payment.proof_reviewed_at = None
            payment.proof_reviewed_by = None
            payment.proof_review_notes = ''
            payment.save()

            logger.info(
                f"Payment proof submitted. Order ID: {order.pk}, Payment ID: {payment.pk}, "
                f"Content type: {payment.proof_content_type}, Size: {payment.proof_size}"
            )

        self.metrics.increment('payments.proof_submitted')
        notify_after_commit(payment_proof_submitted, sender=self.__class__, order=order, payment=payment)
        return payment

    def review_payment_proof(self, order_id, admin, approve, notes=''):
        """
        Confirm or reject a submitted transfer.

        Approving marks the payment paid and moves the order to processing.
        Rejecting returns the payment to pending so the buyer can resubmit
        before the deadline.

        Returns:
            OrderPayment: The reviewed payment

        Raises:
            ForbiddenError, NotFoundError, InvalidStateError
        """
        self._require_admin(admin, 'review payments')

        with locked_order(order_id) as (order, payment):
            target = OrderPayment.Status.PAID if approve else OrderPayment.Status.PENDING
            if not payment.can_transition_to(target)[0]:
                raise InvalidStateError(
                    f'Payment is {payment.status}, not awaiting confirmation.',
                    payment_status=payment.status,
                )
            if order.status != Order.Status.PENDING:
                raise InvalidStateError(
                    f'Order is {order.status}, not pending.',
                    current_status=order.status,
                )

            now = timezone.now()
            payment.proof_reviewed_at = now
            payment.proof_reviewed_by = admin
            payment.proof_review_notes = notes or ''

            if approve:
                payment.status = OrderPayment.Status.PAID
                payment.paid_at = now
                payment.proof_status = OrderPayment.ProofStatus.APPROVED
                payment.save()
                order.status = Order.Status.PROCESSING
                order.save()
            else:
                payment.status = OrderPayment.Status.PENDING
                payment.proof_status = OrderPayment.ProofStatus.REJECTED
                payment.save()

            logger.info(
                f"Payment proof reviewed. Order ID: {order.pk}, Payment ID: {payment.pk}, "
                f"Approved: {bool(approve)}, Admin ID: {admin.pk}"
            )

        self.metrics.increment('payments.reviewed', outcome='approved' if approve else 'rejected')
        notify_after_commit(
            payment_reviewed, sender=self.__class__, order=order, payment=payment, approved=bool(approve)
        )
        return payment

    # Settlement

    def admin_approve_sale(self, order_id, admin):
        """
        Settle a paid order: order -> completed, bicycle -> sold.

        Returns:
            Order: The completed order

        Raises:
            ForbiddenError, NotFoundError
            PreconditionFailedError: With failed_precondition set to
                'already_settled', 'payment_not_paid', 'bicycle_not_reserved'
                or 'invalid_order_status'
        """
        self._require_admin(admin, 'approve sales')

        with locked_order(order_id) as (order, payment):
            bicycle = order.bicycle
            self._check_not_settled(order, payment)

            if not order.can_be_approved_by_admin():
                if payment.status != OrderPayment.Status.PAID:
                    self._precondition_failed(
                        'payment_not_paid',
                        f'The payment has not been confirmed (payment is {payment.status}).',
                        order, payment,
                    )
                self._precondition_failed(
                    'bicycle_not_reserved',
                    f'The bicycle is not reserved (bicycle is {bicycle.status}).',
                    order, payment,
                )

            can_complete, error_message = order.can_transition_to(Order.Status.COMPLETED)
            if not can_complete:
                self._precondition_failed('invalid_order_status', error_message, order, payment)

            transition(bicycle, Bicycle.Status.RESERVED, Bicycle.Status.SOLD)
            order.status = Order.Status.COMPLETED
            order.completed_at = timezone.now()
            order.save()

            logger.info(
                f"Sale approved. Order ID: {order.pk}, Bicycle ID: {bicycle.pk}, Admin ID: {admin.pk}"
            )

        self.metrics.increment('sales.approved')
        notify_after_commit(sale_approved, sender=self.__class__, order=order)
        return order

    def admin_reject_sale(self, order_id, admin, reason=''):
        """
        Reject a paid sale: order -> cancelled, bicycle -> available, payment -> refunded.

        All three writes happen in one transaction.

        Returns:
            Order: The cancelled order

        Raises:
            ForbiddenError, NotFoundError
            PreconditionFailedError: If the order is already settled or unpaid
        """
        self._require_admin(admin, 'reject sales')

        with locked_order(order_id) as (order, payment):
            self._check_not_settled(order, payment)

            if payment.status != OrderPayment.Status.PAID:
                self._precondition_failed(
                    'payment_not_paid',
                    f'Only paid orders can be rejected (payment is {payment.status}).',
                    order, payment,
                )

            can_cancel, error_message = order.can_transition_to(Order.Status.CANCELLED)
            if not can_cancel:
                self._precondition_failed('invalid_order_status', error_message, order, payment)

            reason = reason or 'Sale rejected by administrator'
            self._release_bicycle(order.bicycle)
            self._cancel(order, reason)
            payment.status = OrderPayment.Status.REFUNDED
            payment.refunded_at = timezone.now()
            payment.save()

            logger.info(
                f"Sale rejected. Order ID: {order.pk}, Bicycle ID: {order.bicycle_id}, "
                f"Admin ID: {admin.pk}, Reason: {reason}"
            )

        self.metrics.increment('sales.rejected')
        notify_after_commit(sale_rejected, sender=self.__class__, order=order, reason=reason)
        return order

    # Helpers

    def _require_admin(self, user, action):
        if not getattr(user, 'is_admin', False):
            logger.warning(f"Non-admin attempted to {action}. User ID: {getattr(user, 'pk', None)}")
            raise ForbiddenError(f'Only administrators can {action}.')

    def _check_not_settled(self, order, payment):
        settled = (Order.Status.COMPLETED, Order.Status.CANCELLED, Order.Status.REFUNDED)
        if order.status in settled:
            self._precondition_failed(
                'already_settled',
                f'This order has already been settled (order is {order.status}).',
                order, payment,
            )

    def _precondition_failed(self, failed_precondition, message, order, payment):
        logger.warning(
            f"Settlement precondition failed. Order ID: {order.pk}, "
            f"Precondition: {failed_precondition}, Order status: {order.status}, "
            f"Payment status: {payment.status}, Bicycle status: {order.bicycle.status}"
        )
        raise PreconditionFailedError(
            message,
            failed_precondition=failed_precondition,
            order_status=order.status,
            payment_status=payment.status,
            bicycle_status=order.bicycle.status,
        )

    def _release_bicycle(self, bicycle):
        if bicycle.status == Bicycle.Status.RESERVED:
            transition(bicycle, Bicycle.Status.RESERVED, Bicycle.Status.AVAILABLE)
        else:
            logger.warning(
                f"Bicycle not reserved while releasing order. Bicycle ID: {bicycle.pk}, "
                f"Status: {bicycle.status}"
            )

    def _cancel(self, order, reason):
        order.status = Order.Status.CANCELLED
        order.cancel_reason = reason
        order.cancelled_at = timezone.now()
        order.save()

    def _fail_payment(self, payment, reason):
        payment.status = OrderPayment.Status.FAILED
        payment.failure_reason = reason[:255]
        payment.failed_at = timezone.now()
        payment.save()

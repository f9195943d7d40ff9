"""
Negotiation service: offers, acceptance and rejection.

An offer is a Message with is_offer=True. Sellers accept or reject offers
explicitly; there is no automatic highest-bid resolution. Accepting one offer
is the single moment that disqualifies every competing offer on the bicycle.
"""

import logging
from collections import namedtuple
from decimal import Decimal

from django.core.exceptions import ImproperlyConfigured, ValidationError
from django.db import IntegrityError
from django.utils import timezone

from .availability import locked_bicycle, transition
from .conf import OFFER_ACCEPTANCE_MODES, marketplace_setting
from .exceptions import (
    BicycleUnavailableError,
    DuplicatePendingOfferError,
    ForbiddenError,
    InputValidationError,
    InvalidStateError,
    NotFoundError,
    SelfTradeError,
)
from .metrics import get_metrics_backend
from .models import Bicycle, Message
from .orders import OrderWorkflow
from .pricing import format_amount
from .signals import notify_after_commit, offer_accepted, offer_created, offer_rejected
from .validators import validate_offer_amount

logger = logging.getLogger(__name__)

OfferDecision = namedtuple('OfferDecision', ['offer', 'response_message', 'order', 'rejected_offer_ids'])


def offer_summary(offer):
    """Client-displayable summary of an offer."""
    return {
        'id': offer.id,
        'amount': str(offer.offer_amount),
        'status': offer.offer_status,
        'created_at': offer.created_at.isoformat() if offer.created_at else None,
    }


def normalize_offer_content(content, amount):
    """
    Make sure the message text states the offered amount.

    Args:
        content: Text supplied by the buyer (may be empty)
        amount: Offer amount

    Returns:
        str: Content that contains the formatted amount
    """
    formatted = format_amount(amount)
    content = (content or '').strip()
    if not content:
        return f'Offer: {formatted}'
    if formatted in content:
        return content
    return f'{content}\n\nOffer: {formatted}'


class NegotiationService:
    """
    Creates offers and records the seller's decision on them.

    Args:
        metrics: WorkflowMetrics backend (defaults to the configured backend)
        order_workflow: OrderWorkflow used to reserve the bicycle on acceptance
    """

    def __init__(self, metrics=None, order_workflow=None):
        self.metrics = metrics if metrics is not None else get_metrics_backend()
        self.order_workflow = order_workflow or OrderWorkflow(metrics=self.metrics)

    def create_offer(self, buyer, seller, bicycle_id, amount, content=''):
        """
        Send an offer from buyer to the bicycle's seller.

        Runs under the bicycle row lock so the availability check and the
        duplicate check see a stable bicycle.

        Args:
            buyer: Acting user
            seller: Recipient user; must own the bicycle
            bicycle_id: Bicycle being negotiated
            amount: Offered price
            content: Optional message text

        Returns:
            Message: The pending offer

        Raises:
            InputValidationError: Amount missing or not positive, or seller
                does not own the bicycle
            SelfTradeError: Buyer owns the bicycle or addresses themself
            NotFoundError: Bicycle does not exist
            BicycleUnavailableError: Bicycle is not available
            DuplicatePendingOfferError: Buyer already has a pending offer here
        """
        try:
            validate_offer_amount(amount)
        except ValidationError as e:
            raise InputValidationError.from_django(e, field='amount')
        amount = Decimal(str(amount))

        if seller.pk == buyer.pk:
            raise SelfTradeError('You cannot send an offer to yourself.')

        try:
            with locked_bicycle(bicycle_id) as bicycle:
                if bicycle.seller_id == buyer.pk:
                    logger.warning(
                        f"Self-offer refused. Bicycle ID: {bicycle.pk}, User ID: {buyer.pk}"
                    )
                    raise SelfTradeError('You cannot make an offer on your own bicycle.')

                if bicycle.seller_id != seller.pk:
                    raise InputValidationError(
                        'Offers must be sent to the seller of the bicycle.',
                        code='recipient_not_seller',
                        field='recipient_id',
                    )

                if not bicycle.is_available():
                    logger.warning(
                        f"Offer refused, bicycle not available. Bicycle ID: {bicycle.pk}, "
                        f"Status: {bicycle.status}, Buyer ID: {buyer.pk}"
                    )
                    raise BicycleUnavailableError(current_status=bicycle.status)

                existing = Message.pending_offer_for(buyer.pk, seller.pk, bicycle.pk)
                if existing is not None:
                    self._duplicate_offer(existing, buyer)

                offer = Message(
                    sender=buyer,
                    recipient=seller,
                    bicycle=bicycle,
                    content=normalize_offer_content(content, amount),
                    is_offer=True,
                    offer_amount=amount,
                    offer_status=Message.OfferStatus.PENDING,
                )
                offer.save()
        except IntegrityError:
            # A concurrent request inserted the pending offer first
            existing = Message.pending_offer_for(buyer.pk, seller.pk, bicycle_id)
            if existing is None:
                raise
            self._duplicate_offer(existing, buyer)

        logger.info(
            f"Offer created. Offer ID: {offer.id}, Bicycle ID: {offer.bicycle_id}, "
            f"Buyer ID: {buyer.pk}, Seller ID: {seller.pk}, Amount: {amount}"
        )
        self.metrics.increment('offers.created')
        notify_after_commit(offer_created, sender=self.__class__, offer=offer)
        return offer

    def accept_offer(self, offer_id, acting_user):
        """
        Accept a pending offer.

        In one transaction holding the bicycle lock:
        1. Reserve the bicycle and create the order at the offered price
           (or mark it sold when OFFER_ACCEPTANCE_MODE is 'direct_sale')
        2. Mark the offer accepted
        3. Reject every other pending offer on the bicycle in a single UPDATE
        4. Send the buyer a response message referencing the order

        Returns:
            OfferDecision

        Raises:
            NotFoundError, ForbiddenError
            InvalidStateError: Offer is not pending or bicycle is not available
        """
        mode = marketplace_setting('OFFER_ACCEPTANCE_MODE')
        if mode not in OFFER_ACCEPTANCE_MODES:
            raise ImproperlyConfigured(f'Unknown OFFER_ACCEPTANCE_MODE: {mode}')

        offer = self._get_offer_for_recipient(offer_id, acting_user, 'accept')

        with locked_bicycle(offer.bicycle_id) as bicycle:
            offer = Message.objects.select_for_update().get(pk=offer.pk)
            self._require_pending(offer)

            if not bicycle.is_available():
                logger.warning(
                    f"Offer acceptance refused, bicycle not available. Offer ID: {offer.pk}, "
                    f"Bicycle ID: {bicycle.pk}, Status: {bicycle.status}"
                )
                raise InvalidStateError(
                    'This bicycle is no longer available.',
                    code='bicycle_unavailable',
                    bicycle_status=bicycle.status,
                )

            order = None
            if mode == 'direct_sale':
                transition(bicycle, Bicycle.Status.AVAILABLE, Bicycle.Status.SOLD)
            else:
                order = self.order_workflow.place_order(
                    bicycle,
                    offer.sender,
                    offer.offer_amount,
                    shipping_method=marketplace_setting('OFFER_ORDER_SHIPPING_METHOD'),
                    offer=offer,
                )

            offer.offer_status = Message.OfferStatus.ACCEPTED
            offer.save()

            competing = Message.objects.filter(
                bicycle_id=bicycle.pk,
                is_offer=True,
                offer_status=Message.OfferStatus.PENDING,
            ).exclude(pk=offer.pk)
            rejected_offer_ids = list(competing.values_list('pk', flat=True))
            competing.update(offer_status=Message.OfferStatus.REJECTED, updated_at=timezone.now())

            response_message = Message(
                sender=acting_user,
                recipient=offer.sender,
                bicycle=bicycle,
                content=self._acceptance_content(offer, order),
            )
            response_message.save()

            logger.info(
                f"Offer accepted. Offer ID: {offer.pk}, Bicycle ID: {bicycle.pk}, "
                f"Mode: {mode}, Order: {order.order_number if order else None}, "
                f"Rejected offers: {rejected_offer_ids}"
            )

        self.metrics.increment('offers.accepted', mode=mode)
        if rejected_offer_ids:
            self.metrics.increment('offers.rejected', len(rejected_offer_ids), reason='competing')
        notify_after_commit(
            offer_accepted,
            sender=self.__class__,
            offer=offer,
            order=order,
            rejected_offer_ids=rejected_offer_ids,
        )
        return OfferDecision(offer, response_message, order, rejected_offer_ids)

    def reject_offer(self, offer_id, acting_user):
        """
        Reject a pending offer. The bicycle and any orders are untouched.

        Returns:
            OfferDecision

        Raises:
            NotFoundError, ForbiddenError
            InvalidStateError: Offer is not pending
        """
        offer = self._get_offer_for_recipient(offer_id, acting_user, 'reject')

        with locked_bicycle(offer.bicycle_id):
            offer = Message.objects.select_for_update().get(pk=offer.pk)
            self._require_pending(offer)

            offer.offer_status = Message.OfferStatus.REJECTED
            offer.save()

            response_message = Message(
                sender=acting_user,
                recipient=offer.sender,
                bicycle_id=offer.bicycle_id,
                content=f'Sorry, I declined your offer of {offer.formatted_offer_amount}.',
            )
            response_message.save()

            logger.info(
                f"Offer rejected. Offer ID: {offer.pk}, Bicycle ID: {offer.bicycle_id}, "
                f"Seller ID: {acting_user.pk}"
            )

        self.metrics.increment('offers.rejected', reason='seller')
        notify_after_commit(offer_rejected, sender=self.__class__, offer=offer)
        return OfferDecision(offer, response_message, None, [])

    def _get_offer_for_recipient(self, offer_id, acting_user, action):
        offer = Message.objects.filter(pk=offer_id, is_offer=True).first()
        if offer is None:
            raise NotFoundError('Offer not found.', code='offer_not_found')

        if offer.recipient_id != acting_user.pk:
            logger.warning(
                f"Unauthorized offer {action}. Offer ID: {offer.pk}, User ID: {acting_user.pk}, "
                f"Recipient ID: {offer.recipient_id}"
            )
            raise ForbiddenError(f'You do not have permission to {action} this offer.')
        return offer

    def _require_pending(self, offer):
        if not offer.is_pending_offer():
            raise InvalidStateError(
                f'This offer is already {offer.offer_status}.',
                code='offer_not_pending',
                offer_status=offer.offer_status,
            )

    def _duplicate_offer(self, existing, buyer):
        logger.warning(
            f"Duplicate pending offer refused. Existing offer ID: {existing.pk}, "
            f"Bicycle ID: {existing.bicycle_id}, Buyer ID: {buyer.pk}"
        )
        self.metrics.increment('offers.duplicate')
        raise DuplicatePendingOfferError(existing_offer=offer_summary(existing))

    def _acceptance_content(self, offer, order):
        content = f'I accepted your offer of {offer.formatted_offer_amount}!'
        if order is None:
            return f'{content} Please contact me to complete the transaction.'
        deadline = timezone.localtime(order.payment_deadline).strftime('%Y-%m-%d %H:%M')
        return (
            f'{content} Your order number is {order.order_number}. '
            f'Please complete the bank transfer before {deadline}.'
        )

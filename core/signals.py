"""
Notification signals for the negotiation and order workflow.

Workflow services announce state changes through these signals. Delivery is
out of scope here: the receivers below only log, and real channels (email,
push) connect their own receivers. Signals are sent after the surrounding
transaction commits and with send_robust(), so a failing receiver is logged
and never rolls back the state change that triggered it.
"""

import logging

from django.db import transaction
from django.dispatch import Signal, receiver

logger = logging.getLogger(__name__)

# Negotiation
offer_created = Signal()
offer_accepted = Signal()
offer_rejected = Signal()

# Orders and payments
order_created = Signal()
order_cancelled = Signal()
order_expired = Signal()
payment_proof_submitted = Signal()
payment_reviewed = Signal()
sale_approved = Signal()
sale_rejected = Signal()


def notify_after_commit(signal, sender, **kwargs):
    """
    Send `signal` once the current transaction commits.

    Outside a transaction the signal is sent immediately. If the transaction
    rolls back nothing is sent.

    Args:
        signal: One of the signals defined in this module
        sender: Sending class (usually the service class)
        **kwargs: Signal payload
    """
    def _send():
        results = signal.send_robust(sender=sender, **kwargs)
        for receiver_func, response in results:
            if isinstance(response, Exception):
                logger.error(
                    f"Notification receiver {getattr(receiver_func, '__name__', receiver_func)} failed: "
                    f"{response!r}, Sender: {getattr(sender, '__name__', sender)}",
                    exc_info=(type(response), response, response.__traceback__)
                )

    transaction.on_commit(_send)


@receiver(offer_created)
def log_offer_created(sender, offer, **kwargs):
    logger.info(
        f"Notify seller of new offer. Offer ID: {offer.id}, "
        f"Seller ID: {offer.recipient_id}, Bicycle ID: {offer.bicycle_id}"
    )


@receiver(offer_accepted)
def log_offer_accepted(sender, offer, order=None, rejected_offer_ids=(), **kwargs):
    """
    Tell the buyer their offer was accepted and the other bidders that theirs were declined.
    """
    logger.info(
        f"Notify buyer of accepted offer. Offer ID: {offer.id}, Buyer ID: {offer.sender_id}, "
        f"Order: {order.order_number if order else None}"
    )
    if rejected_offer_ids:
        logger.info(
            f"Notify buyers of declined offers. Bicycle ID: {offer.bicycle_id}, "
            f"Offer IDs: {list(rejected_offer_ids)}"
        )


@receiver(offer_rejected)
def log_offer_rejected(sender, offer, **kwargs):
    logger.info(f"Notify buyer of rejected offer. Offer ID: {offer.id}, Buyer ID: {offer.sender_id}")


@receiver(order_created)
def log_order_created(sender, order, **kwargs):
    logger.info(
        f"Notify buyer and seller of new order. Order: {order.order_number}, "
        f"Buyer ID: {order.buyer_id}, Bicycle ID: {order.bicycle_id}"
    )


@receiver(order_cancelled)
@receiver(order_expired)
def log_order_cancelled(sender, order, reason='', **kwargs):
    logger.info(
        f"Notify buyer and seller of cancelled order. Order: {order.order_number}, Reason: {reason}"
    )


@receiver(payment_proof_submitted)
def log_payment_proof_submitted(sender, order, payment, **kwargs):
    logger.info(
        f"Notify admins of payment proof. Order: {order.order_number}, Payment ID: {payment.id}"
    )


@receiver(payment_reviewed)
def log_payment_reviewed(sender, order, payment, approved, **kwargs):
    logger.info(
        f"Notify buyer of payment review. Order: {order.order_number}, "
        f"Approved: {approved}, Payment status: {payment.status}"
    )


@receiver(sale_approved)
@receiver(sale_rejected)
def log_sale_settled(sender, order, **kwargs):
    logger.info(
        f"Notify buyer and seller of settlement. Order: {order.order_number}, Status: {order.status}"
    )

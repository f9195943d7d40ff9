"""
API views for the bicycle marketplace negotiation and order workflow.

Views only validate request shape and delegate to the workflow services.
Domain errors raised by the services are DRF exceptions and are rendered by
core.exceptions.marketplace_exception_handler.
"""

import logging

from rest_framework import generics, status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from .availability import approve_listing
from .models import Order
from .negotiation import NegotiationService
from .orders import OrderWorkflow
from .permissions import IsOrderParticipant, IsStaffUser
from .serializers import (
    BicycleSummarySerializer,
    MessageSerializer,
    OfferCreateSerializer,
    OrderCreateSerializer,
    OrderSerializer,
    PaymentProofSerializer,
    PaymentReviewSerializer,
    ReasonSerializer,
)

logger = logging.getLogger(__name__)


def get_client_ip(request):
    """
    Get client IP address from request.
    Handles proxy headers for accurate IP detection.
    """
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        return x_forwarded_for.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR')


def order_snapshot(order):
    """Re-read an order with its relations and serialize it."""
    order = Order.objects.select_related('bicycle', 'buyer', 'payment').get(pk=order.pk)
    return OrderSerializer(order).data


class NegotiationView(APIView):
    """Base class for views backed by NegotiationService."""

    permission_classes = [IsAuthenticated]
    service_class = NegotiationService

    def get_service(self):
        return self.service_class()


class OrderWorkflowView(APIView):
    """Base class for views backed by OrderWorkflow."""

    permission_classes = [IsAuthenticated]
    service_class = OrderWorkflow

    def get_service(self):
        return self.service_class()


class OfferCreateView(NegotiationView):
    """
    API endpoint for making an offer on a bicycle.

    POST /api/offers/
    Headers: Authorization: Bearer <access_token>
    Request body: {
        "recipient_id": 2,
        "bicycle_id": 7,
        "amount": "20000",
        "content": "Would you take 20,000?"
    }

    Success response (201): the offer message
    {
        "id": 11,
        "sender_id": 3,
        "recipient_id": 2,
        "bicycle_id": 7,
        "content": "Would you take 20,000?\\n\\nOffer: NT$20,000",
        "is_offer": true,
        "offer_amount": "20000.00",
        "formatted_offer_amount": "NT$20,000",
        "offer_status": "pending",
        ...
    }

    Error responses:
    - 400: Invalid input, self-offer (code self_trade), recipient is not the seller
    - 401: Missing or invalid JWT token
    - 404: Bicycle not found
    - 409: Bicycle unavailable (bicycle_unavailable) or duplicate pending offer
      (duplicate_pending_offer, with existing_offer {id, amount, status, created_at})
    """

    def post(self, request, *args, **kwargs):
        """
        Handle offer creation.

        Steps:
        1. Validate request data
        2. Create the offer under the bicycle lock
        3. Return the created offer
        """
        # Step 1: Validate request data
        serializer = OfferCreateSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        data = serializer.validated_data

        # Step 2: Create offer
        offer = self.get_service().create_offer(
            buyer=request.user,
            seller=serializer.recipient,
            bicycle_id=data['bicycle_id'],
            amount=data['amount'],
            content=data.get('content', ''),
        )

        logger.info(
            f"Offer created via API. Offer ID: {offer.id}, User ID: {request.user.id}, "
            f"IP: {get_client_ip(request)}"
        )

        # Step 3: Return created offer
        return Response(MessageSerializer(offer).data, status=status.HTTP_201_CREATED)


class OfferDecisionView(NegotiationView):
    """Shared response rendering for accept/reject."""

    def render_decision(self, decision):
        return Response({
            'offer': MessageSerializer(decision.offer).data,
            'response_message': MessageSerializer(decision.response_message).data,
            'order': order_snapshot(decision.order) if decision.order else None,
            'rejected_offer_ids': list(decision.rejected_offer_ids),
        }, status=status.HTTP_200_OK)


class OfferAcceptView(OfferDecisionView):
    """
    API endpoint for the seller to accept an offer.

    PATCH /api/offers/<id>/accept/

    Success response (200):
    {
        "offer": {... "offer_status": "accepted"},
        "response_message": {...},
        "order": {... "status": "pending", "payment": {...}},
        "rejected_offer_ids": [9, 10]
    }

    "order" is null when offers are accepted as direct sales.

    Error responses:
    - 403: Acting user is not the offer's recipient
    - 404: Offer not found
    - 409: Offer not pending (offer_not_pending) or bicycle not available
    """

    def patch(self, request, pk, *args, **kwargs):
        decision = self.get_service().accept_offer(pk, request.user)
        logger.info(
            f"Offer accepted via API. Offer ID: {pk}, User ID: {request.user.id}, "
            f"IP: {get_client_ip(request)}"
        )
        return self.render_decision(decision)


class OfferRejectView(OfferDecisionView):
    """
    API endpoint for the seller to reject an offer.

    PATCH /api/offers/<id>/reject/

    Error responses:
    - 403: Acting user is not the offer's recipient
    - 404: Offer not found
    - 409: Offer not pending
    """

    def patch(self, request, pk, *args, **kwargs):
        decision = self.get_service().reject_offer(pk, request.user)
        logger.info(
            f"Offer rejected via API. Offer ID: {pk}, User ID: {request.user.id}, "
            f"IP: {get_client_ip(request)}"
        )
        return self.render_decision(decision)


class OrderCreateView(OrderWorkflowView):
    """
    API endpoint for buying a bicycle at its listing price.

    POST /api/orders/
    Headers: Authorization: Bearer <access_token>
    Request body: {
        "bicycle_id": 7,
        "shipping_method": "assisted_delivery",
        "shipping_distance": 12,
        "shipping_address": {
            "full_name": "Lin Mei",
            "phone_number": "0912-345-678",
            "county": "Taipei",
            "address_line1": "No. 1, Sec. 1, Zhongxiao E. Rd."
        },
        "payment_method": "bank_transfer"
    }

    Success response (201): the order with its pending payment and bank
    transfer instructions. The bicycle is reserved.

    Error responses:
    - 400: Invalid input, self-purchase (self_trade), unsupported payment method
    - 404: Bicycle not found
    - 409: Bicycle not available (bicycle_unavailable)
    - 503: Database temporarily unavailable (safe to retry)
    """

    def post(self, request, *args, **kwargs):
        """
        Handle order creation.

        Steps:
        1. Validate request data
        2. Lock the bicycle, re-check availability, create order and payment
        3. Return the order snapshot
        """
        # Step 1: Validate request data
        serializer = OrderCreateSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        params = dict(serializer.validated_data)
        bicycle_id = params.pop('bicycle_id')

        # Step 2: Create order atomically
        order = self.get_service().create_order(request.user, bicycle_id, params)

        logger.info(
            f"Order created via API. Order: {order.order_number}, User ID: {request.user.id}, "
            f"IP: {get_client_ip(request)}"
        )

        # Step 3: Return order details
        return Response(order_snapshot(order), status=status.HTTP_201_CREATED)


class OrderDetailView(generics.RetrieveAPIView):
    """
    API endpoint for order details.

    GET /api/orders/<id>/

    Visible to the buyer, the seller of the bicycle and admins.

    Error responses:
    - 403: Not a party to the order
    - 404: Order not found
    """

    permission_classes = [IsAuthenticated, IsOrderParticipant]
    serializer_class = OrderSerializer
    queryset = Order.objects.select_related('bicycle', 'buyer', 'payment')


class OrderCancelView(OrderWorkflowView):
    """
    API endpoint for cancelling an unpaid order.

    PATCH /api/orders/<id>/cancel/
    Request body: {"reason": "Changed my mind"}

    The buyer or an admin may cancel while the order is pending and the
    payment has not been confirmed. The bicycle becomes available again.

    Error responses:
    - 403: Not the buyer or an admin
    - 404: Order not found
    - 409: Order or payment no longer cancellable
    """

    def patch(self, request, pk, *args, **kwargs):
        serializer = ReasonSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        order = self.get_service().cancel_order(pk, request.user, serializer.validated_data['reason'])
        return Response(order_snapshot(order), status=status.HTTP_200_OK)


class PaymentProofView(OrderWorkflowView):
    """
    API endpoint for the buyer to submit proof of a bank transfer.

    POST /api/orders/<id>/payment-proof/
    Request body: {
        "filename": "receipt.jpg",
        "content_type": "image/jpeg",
        "size": 204800,
        "note": "Transferred from my Cathay account",
        "account_last_five": "12345"
    }

    Success response (200): the order snapshot, payment awaiting_confirmation.

    Error responses:
    - 400: Unsupported file type, file too large, malformed account digits
    - 403: Not the buyer
    - 404: Order not found
    - 409: Order not awaiting payment, or deadline passed (payment_deadline_passed)
    """

    def post(self, request, pk, *args, **kwargs):
        serializer = PaymentProofSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        payment = self.get_service().submit_payment_proof(pk, request.user, dict(serializer.validated_data))
        logger.info(
            f"Payment proof submitted via API. Order ID: {pk}, Payment ID: {payment.id}, "
            f"User ID: {request.user.id}, IP: {get_client_ip(request)}"
        )
        return Response(order_snapshot(payment.order), status=status.HTTP_200_OK)


class AdminPaymentConfirmView(OrderWorkflowView):
    """
    Admin endpoint for confirming or rejecting a submitted transfer.

    PATCH /api/admin/orders/<id>/confirm-payment/
    Request body: {"approve": true, "notes": "Matched bank statement"}

    Approve: payment paid, order processing.
    Reject: payment back to pending so the buyer can resubmit.

    Error responses:
    - 403: Not an admin
    - 404: Order not found
    - 409: Payment not awaiting confirmation
    """

    permission_classes = [IsAuthenticated, IsStaffUser]

    def patch(self, request, pk, *args, **kwargs):
        serializer = PaymentReviewSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        payment = self.get_service().review_payment_proof(
            pk,
            request.user,
            approve=serializer.validated_data['approve'],
            notes=serializer.validated_data['notes'],
        )
        return Response(order_snapshot(payment.order), status=status.HTTP_200_OK)


class AdminSaleApproveView(OrderWorkflowView):
    """
    Admin endpoint for approving a paid sale.

    PATCH /api/admin/orders/<id>/approve-sale/

    Success response (200): order completed, bicycle sold.

    Error responses:
    - 403: Not an admin
    - 404: Order not found
    - 409: precondition_failed with failed_precondition one of
      already_settled, payment_not_paid, bicycle_not_reserved, invalid_order_status
    """

    permission_classes = [IsAuthenticated, IsStaffUser]

    def patch(self, request, pk, *args, **kwargs):
        order = self.get_service().admin_approve_sale(pk, request.user)
        logger.info(
            f"Sale approved via API. Order ID: {pk}, Admin ID: {request.user.id}, "
            f"IP: {get_client_ip(request)}"
        )
        return Response(order_snapshot(order), status=status.HTTP_200_OK)


class AdminSaleRejectView(OrderWorkflowView):
    """
    Admin endpoint for rejecting a paid sale.

    PATCH /api/admin/orders/<id>/reject-sale/
    Request body: {"reason": "Bicycle failed inspection"}

    Success response (200): order cancelled, bicycle available, payment refunded.

    Error responses:
    - 403: Not an admin
    - 404: Order not found
    - 409: precondition_failed (already_settled or payment_not_paid)
    """

    permission_classes = [IsAuthenticated, IsStaffUser]

    def patch(self, request, pk, *args, **kwargs):
        serializer = ReasonSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        order = self.get_service().admin_reject_sale(pk, request.user, serializer.validated_data['reason'])
        logger.info(
            f"Sale rejected via API. Order ID: {pk}, Admin ID: {request.user.id}, "
            f"IP: {get_client_ip(request)}"
        )
        return Response(order_snapshot(order), status=status.HTTP_200_OK)


class AdminBicycleApproveView(APIView):
    """
    Admin endpoint for publishing a listing that is awaiting review.

    PATCH /api/admin/bicycles/<id>/approve/

    Error responses:
    - 403: Not an admin
    - 404: Bicycle not found
    - 409: Listing is not pending review (bicycle_state_conflict)
    """

    permission_classes = [IsAuthenticated, IsStaffUser]

    def patch(self, request, pk, *args, **kwargs):
        bicycle = approve_listing(pk, request.user)
        return Response(BicycleSummarySerializer(bicycle).data, status=status.HTTP_200_OK)

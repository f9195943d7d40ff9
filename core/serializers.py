"""
Serializers for offers, orders and payments.

Input serializers only check the shape of the request; business rules live in
the workflow services so they are enforced under the bicycle lock.
"""

from rest_framework import serializers
from django.contrib.auth import get_user_model

from .models import Bicycle, Message, Order, OrderPayment

User = get_user_model()


class UserSummarySerializer(serializers.ModelSerializer):
    """Public user information embedded in orders."""

    class Meta:
        model = User
        fields = ['id', 'username', 'email']
        read_only_fields = fields


class BicycleSummarySerializer(serializers.ModelSerializer):
    """Bicycle information embedded in orders and offers."""

    seller_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = Bicycle
        fields = ['id', 'title', 'price', 'status', 'seller_id']
        read_only_fields = fields


class MessageSerializer(serializers.ModelSerializer):
    """
    Serializer for messages and offers.

    Fields:
    - formatted_offer_amount: e.g. "NT$20,000" (null for plain messages)
    """

    sender_id = serializers.IntegerField(read_only=True)
    recipient_id = serializers.IntegerField(read_only=True)
    bicycle_id = serializers.IntegerField(read_only=True)
    formatted_offer_amount = serializers.CharField(read_only=True)

    class Meta:
        model = Message
        fields = [
            'id', 'sender_id', 'recipient_id', 'bicycle_id', 'content',
            'is_offer', 'offer_amount', 'formatted_offer_amount', 'offer_status',
            'created_at', 'updated_at',
        ]
        read_only_fields = fields


class OfferCreateSerializer(serializers.Serializer):
    """
    Input for POST /api/offers/.

    Fields:
    - recipient_id: Seller of the bicycle (required)
    - bicycle_id: Bicycle being negotiated (required)
    - amount: Offered price (required, checked to be > 0 by the service)
    - content: Optional message text; the amount is added if missing
    """

    recipient_id = serializers.IntegerField()
    bicycle_id = serializers.IntegerField()
    amount = serializers.DecimalField(max_digits=10, decimal_places=2)
    content = serializers.CharField(required=False, allow_blank=True, max_length=2000, default='')

    def validate_recipient_id(self, value):
        """
        Resolve the recipient.

        Returns:
            int: The recipient id (the user instance is kept in self.recipient)
        """
        recipient = User.objects.filter(pk=value, is_active=True).first()
        if recipient is None:
            raise serializers.ValidationError('Recipient not found.')
        self.recipient = recipient
        return value


class ShippingAddressSerializer(serializers.Serializer):
    full_name = serializers.CharField(required=False, allow_blank=True, max_length=100)
    phone_number = serializers.CharField(required=False, allow_blank=True, max_length=20)
    county = serializers.CharField(required=False, allow_blank=True, max_length=50)
    district = serializers.CharField(required=False, allow_blank=True, max_length=50)
    address_line1 = serializers.CharField(required=False, allow_blank=True, max_length=255)
    address_line2 = serializers.CharField(required=False, allow_blank=True, max_length=255)
    postal_code = serializers.CharField(required=False, allow_blank=True, max_length=10)
    delivery_notes = serializers.CharField(required=False, allow_blank=True, max_length=500)


class OrderCreateSerializer(serializers.Serializer):
    """
    Input for POST /api/orders/.

    Fields:
    - bicycle_id: Bicycle to buy (required)
    - shipping_method: self_pickup or assisted_delivery (default assisted_delivery)
    - shipping_distance: Distance in km (optional, >= 0)
    - shipping_address: Required for assisted delivery
    - payment_method: Only bank_transfer is accepted
    """

    bicycle_id = serializers.IntegerField()
    shipping_method = serializers.ChoiceField(
        choices=Order.ShippingMethod.choices,
        required=False,
        default=Order.ShippingMethod.ASSISTED_DELIVERY
    )
    shipping_distance = serializers.IntegerField(required=False, allow_null=True, min_value=0)
    shipping_address = ShippingAddressSerializer(required=False)
    payment_method = serializers.ChoiceField(
        choices=OrderPayment.Method.choices,
        required=False,
        default=OrderPayment.Method.BANK_TRANSFER
    )


class OrderPaymentSerializer(serializers.ModelSerializer):
    """Payment details shown with an order, including transfer instructions."""

    remaining_payment_hours = serializers.SerializerMethodField()

    class Meta:
        model = OrderPayment
        fields = [
            'id', 'status', 'method', 'amount', 'deadline', 'expires_at',
            'instructions', 'remaining_payment_hours', 'paid_at', 'failed_at',
            'refunded_at', 'failure_reason', 'proof_status', 'proof_filename',
            'proof_content_type', 'proof_size', 'proof_note',
            'proof_account_last_five', 'proof_uploaded_at', 'proof_reviewed_at',
            'proof_review_notes',
        ]
        read_only_fields = fields

    def get_remaining_payment_hours(self, obj):
        if obj.status != OrderPayment.Status.PENDING:
            return 0
        return obj.remaining_payment_hours()


class OrderSerializer(serializers.ModelSerializer):
    """Full order snapshot: order, bicycle, buyer and payment."""

    buyer = UserSummarySerializer(read_only=True)
    bicycle = BicycleSummarySerializer(read_only=True)
    offer_id = serializers.IntegerField(read_only=True, allow_null=True)
    payment = OrderPaymentSerializer(read_only=True)

    class Meta:
        model = Order
        fields = [
            'id', 'order_number', 'status', 'buyer', 'bicycle', 'offer_id',
            'subtotal', 'shipping_cost', 'tax', 'total_price',
            'shipping_method', 'shipping_distance', 'shipping_address',
            'payment_deadline', 'expires_at', 'cancel_reason',
            'completed_at', 'cancelled_at', 'created_at', 'updated_at', 'payment',
        ]
        read_only_fields = fields


class ReasonSerializer(serializers.Serializer):
    """Optional free-text reason for cancellations and rejections."""

    reason = serializers.CharField(required=False, allow_blank=True, max_length=1000, default='')


class PaymentProofSerializer(serializers.Serializer):
    """
    Proof-of-transfer metadata for POST /api/orders/<id>/payment-proof/.

    The file itself is stored elsewhere; only its metadata is recorded.
    """

    filename = serializers.CharField(required=False, allow_blank=True, max_length=255, default='')
    content_type = serializers.CharField(max_length=100)
    size = serializers.IntegerField(min_value=1)
    note = serializers.CharField(required=False, allow_blank=True, max_length=1000, default='')
    account_last_five = serializers.CharField(required=False, allow_blank=True, max_length=5, default='')


class PaymentReviewSerializer(serializers.Serializer):
    """Admin decision on a submitted payment proof."""

    approve = serializers.BooleanField()
    notes = serializers.CharField(required=False, allow_blank=True, max_length=1000, default='')

"""
Models for the used-bicycle marketplace.

Bicycle availability, offers (flagged messages), orders and their bank-transfer
payments. Status fields are closed enumerations with explicit transition tables;
the workflow modules are the only code that moves a record between states.
"""

import secrets
from decimal import Decimal

from django.contrib.auth.models import AbstractUser
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from .pricing import format_amount
from .validators import validate_offer_amount


class User(AbstractUser):
    """
    Marketplace user. The same account can sell and buy.

    Admin rights come from Django's is_staff / is_superuser flags.
    """

    email = models.EmailField(
        _('email address'),
        unique=True,
        blank=False,
        null=False,
        error_messages={
            'unique': _('A user with that email already exists.'),
        },
        help_text=_('Required. Enter a valid email address.')
    )

    created_at = models.DateTimeField(
        _('created at'),
        auto_now_add=True,
        help_text=_('Timestamp when the account was created.')
    )

    updated_at = models.DateTimeField(
        _('updated at'),
        auto_now=True,
        help_text=_('Timestamp when the account was last updated.')
    )

    # Log in (and obtain JWTs) with email
    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = ['username']

    class Meta:
        verbose_name = _('user')
        verbose_name_plural = _('users')
        ordering = ['-created_at']

    def __str__(self):
        return self.email or self.username

    @property
    def is_admin(self):
        """Whether this user may perform admin settlement actions."""
        return bool(self.is_staff or self.is_superuser)

    def save(self, *args, **kwargs):
        # Case-insensitive uniqueness
        if self.email:
            self.email = self.email.lower()
        super().save(*args, **kwargs)


class Bicycle(models.Model):
    """
    A bicycle listing.

    Fields:
    - seller: Owner of the listing
    - title: Listing title
    - price: Asking price (must be > 0)
    - status: Listing lifecycle status
    - created_at / updated_at: Timestamps

    Status lifecycle:
    - pending: awaiting admin review (not visible to buyers)
    - draft: withdrawn by the seller (not visible to buyers)
    - available: open for offers and orders
    - reserved: an order exists and awaits payment/settlement
    - sold: terminal
    """

    class Status(models.TextChoices):
        PENDING = 'pending', _('Pending review')
        AVAILABLE = 'available', _('Available')
        RESERVED = 'reserved', _('Reserved')
        SOLD = 'sold', _('Sold')
        DRAFT = 'draft', _('Draft')

    VALID_TRANSITIONS = {
        Status.PENDING: (Status.AVAILABLE, Status.DRAFT),
        Status.DRAFT: (Status.PENDING,),
        Status.AVAILABLE: (Status.RESERVED, Status.SOLD, Status.DRAFT),
        Status.RESERVED: (Status.AVAILABLE, Status.SOLD),
        Status.SOLD: (),
    }

    # Entering or leaving these statuses is owned by the order workflow
    WORKFLOW_STATUSES = (Status.RESERVED, Status.SOLD)

    seller = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='bicycles',
        help_text=_('User selling this bicycle')
    )

    title = models.CharField(
        _('title'),
        max_length=255,
        blank=False,
        null=False,
        help_text=_('Title of the listing')
    )

    price = models.DecimalField(
        _('price'),
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'), message=_('Price must be greater than 0.'))],
        help_text=_('Asking price in NT$')
    )

    status = models.CharField(
        _('status'),
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
        help_text=_('Listing lifecycle status')
    )

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('bicycle')
        verbose_name_plural = _('bicycles')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['seller'], name='core_bicycl_seller__idx'),
            models.Index(fields=['status'], name='core_bicycl_status_idx'),
        ]

    def __str__(self):
        return self.title

    def clean(self):
        """
        Validate model fields.

        Ensures:
        - Title is not empty
        - A plain save() never moves the listing into or out of reserved/sold;
          those transitions go through core.availability.transition()

        Raises:
            ValidationError: If validation fails
        """
        super().clean()

        if not self.title or not self.title.strip():
            raise ValidationError({
                'title': _('Title cannot be empty.')
            })

        if self.pk is not None:
            old_status = Bicycle.objects.filter(pk=self.pk).values_list('status', flat=True).first()
            if old_status is not None and old_status != self.status:
                if old_status in self.WORKFLOW_STATUSES or self.status in self.WORKFLOW_STATUSES:
                    raise ValidationError({
                        'status': _(
                            f'Cannot change status from {old_status} to {self.status} directly. '
                            f'Reserved and sold listings are managed by the order workflow.'
                        )
                    })

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)

    def is_available(self):
        return self.status == self.Status.AVAILABLE

    def can_transition_to(self, new_status):
        return new_status in self.VALID_TRANSITIONS.get(self.status, ())


class Message(models.Model):
    """
    A message between two users about a bicycle.

    An offer is a message with is_offer=True. It carries an offer_amount and an
    offer_status with its own accept/reject lifecycle:

    - pending -> accepted (seller accepts; all other pending offers on the
      bicycle are rejected in the same transaction)
    - pending -> rejected (seller rejects, or a competing offer was accepted)
    - pending -> expired

    A buyer can hold at most one pending offer per (seller, bicycle).
    """

    class OfferStatus(models.TextChoices):
        PENDING = 'pending', _('Pending')
        ACCEPTED = 'accepted', _('Accepted')
        REJECTED = 'rejected', _('Rejected')
        EXPIRED = 'expired', _('Expired')

    sender = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='sent_messages',
        help_text=_('User who sent the message')
    )

    recipient = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='received_messages',
        help_text=_('User who receives the message')
    )

    bicycle = models.ForeignKey(
        Bicycle,
        on_delete=models.CASCADE,
        related_name='messages',
        help_text=_('Bicycle the conversation is about')
    )

    content = models.TextField(
        _('content'),
        blank=False,
        null=False
    )

    is_offer = models.BooleanField(
        _('is offer'),
        default=False,
        help_text=_('Whether this message is a price offer')
    )

    offer_amount = models.DecimalField(
        _('offer amount'),
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        help_text=_('Offered price in NT$ (offers only)')
    )

    offer_status = models.CharField(
        _('offer status'),
        max_length=20,
        choices=OfferStatus.choices,
        null=True,
        blank=True,
        help_text=_('Offer lifecycle status (offers only)')
    )

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('message')
        verbose_name_plural = _('messages')
        ordering = ['created_at']
        indexes = [
            models.Index(fields=['bicycle', 'offer_status'], name='core_messag_bicycle_idx'),
            models.Index(fields=['sender', 'recipient', 'bicycle'], name='core_messag_sender__idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['sender', 'recipient', 'bicycle'],
                name='unique_pending_offer_per_buyer_bicycle',
                condition=models.Q(is_offer=True, offer_status='pending')
            )
        ]

    def __str__(self):
        if self.is_offer:
            return f"Offer {self.formatted_offer_amount} on bicycle {self.bicycle_id} ({self.offer_status})"
        return f"Message from {self.sender_id} to {self.recipient_id}"

    def clean(self):
        """
        Validate model fields.

        Ensures:
        - Content is not empty
        - Sender and recipient differ
        - offer_amount is present and > 0 if and only if is_offer
        - offer_status is set if and only if is_offer

        Raises:
            ValidationError: If validation fails
        """
        super().clean()

        if not self.content or not self.content.strip():
            raise ValidationError({
                'content': _('Message content cannot be empty.')
            })

        if self.sender_id and self.recipient_id and self.sender_id == self.recipient_id:
            raise ValidationError({
                'recipient': _('You cannot send a message to yourself.')
            })

        if self.is_offer:
            validate_offer_amount(self.offer_amount)
            if not self.offer_status:
                raise ValidationError({
                    'offer_status': _('Offers must have an offer status.')
                })
        else:
            if self.offer_amount is not None:
                raise ValidationError({
                    'offer_amount': _('Only offers can carry an offer amount.')
                })
            if self.offer_status:
                raise ValidationError({
                    'offer_status': _('Only offers can carry an offer status.')
                })

    def save(self, *args, **kwargs):
        """
        Validate and save.

        The pending-offer unique constraint is left to the database so that
        concurrent inserts surface as IntegrityError.
        """
        self.full_clean(validate_constraints=False)
        super().save(*args, **kwargs)

    @property
    def formatted_offer_amount(self):
        if not self.is_offer:
            return None
        return format_amount(self.offer_amount)

    def is_pending_offer(self):
        return self.is_offer and self.offer_status == self.OfferStatus.PENDING

    @classmethod
    def pending_offer_for(cls, sender_id, recipient_id, bicycle_id):
        """Return the pending offer for (sender, recipient, bicycle), or None."""
        return cls.objects.filter(
            is_offer=True,
            sender_id=sender_id,
            recipient_id=recipient_id,
            bicycle_id=bicycle_id,
            offer_status=cls.OfferStatus.PENDING,
        ).order_by('-created_at').first()


class Order(models.Model):
    """
    An order against a single bicycle.

    Created when an offer is accepted or a buyer purchases directly. Creating the
    order reserves the bicycle; cancelling or rejecting it restores the bicycle.

    Status lifecycle:
    - pending: awaiting bank transfer
    - processing: payment confirmed, awaiting admin settlement
    - shipped / delivered: fulfilment
    - completed: sale approved by admin (bicycle sold)
    - cancelled: buyer cancel, admin rejection or payment expiry
    - refunded: refunded after completion
    """

    class Status(models.TextChoices):
        PENDING = 'pending', _('Pending')
        PROCESSING = 'processing', _('Processing')
        SHIPPED = 'shipped', _('Shipped')
        DELIVERED = 'delivered', _('Delivered')
        COMPLETED = 'completed', _('Completed')
        CANCELLED = 'cancelled', _('Cancelled')
        REFUNDED = 'refunded', _('Refunded')

    class ShippingMethod(models.TextChoices):
        SELF_PICKUP = 'self_pickup', _('Self pickup')
        ASSISTED_DELIVERY = 'assisted_delivery', _('Assisted delivery')

    # Orders in these statuses hold the bicycle
    ACTIVE_STATUSES = (Status.PENDING, Status.PROCESSING)

    # Shipped and delivered belong to fulfilment; no operation in this service sets them
    VALID_TRANSITIONS = {
        Status.PENDING: (Status.PROCESSING, Status.CANCELLED),
        Status.PROCESSING: (Status.SHIPPED, Status.COMPLETED, Status.CANCELLED),
        Status.SHIPPED: (Status.DELIVERED,),
        Status.DELIVERED: (Status.COMPLETED,),
        Status.COMPLETED: (Status.REFUNDED,),
        Status.CANCELLED: (),
        Status.REFUNDED: (),
    }

    buyer = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='orders',
        help_text=_('User buying the bicycle')
    )

    bicycle = models.ForeignKey(
        Bicycle,
        on_delete=models.CASCADE,
        related_name='orders',
        help_text=_('Bicycle being purchased')
    )

    offer = models.ForeignKey(
        Message,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='orders',
        help_text=_('Accepted offer this order was created from, if any')
    )

    order_number = models.CharField(
        _('order number'),
        max_length=32,
        unique=True,
        help_text=_('Human-readable unique order number')
    )

    status = models.CharField(
        _('status'),
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING
    )

    subtotal = models.DecimalField(_('subtotal'), max_digits=12, decimal_places=2)

    shipping_cost = models.DecimalField(
        _('shipping cost'),
        max_digits=12,
        decimal_places=2,
        default=Decimal('0')
    )

    tax = models.DecimalField(_('tax'), max_digits=12, decimal_places=2, default=Decimal('0'))

    total_price = models.DecimalField(
        _('total price'),
        max_digits=12,
        decimal_places=2,
        help_text=_('subtotal + shipping cost + tax')
    )

    shipping_method = models.CharField(
        _('shipping method'),
        max_length=20,
        choices=ShippingMethod.choices,
        default=ShippingMethod.ASSISTED_DELIVERY
    )

    shipping_distance = models.PositiveIntegerField(
        _('shipping distance'),
        null=True,
        blank=True,
        help_text=_('Delivery distance in km, if known')
    )

    shipping_address = models.JSONField(_('shipping address'), default=dict, blank=True)

    payment_deadline = models.DateTimeField(_('payment deadline'))

    expires_at = models.DateTimeField(
        _('expires at'),
        help_text=_('Unpaid orders are cancelled after this time')
    )

    cancel_reason = models.TextField(_('cancel reason'), blank=True, default='')

    completed_at = models.DateTimeField(_('completed at'), null=True, blank=True)

    cancelled_at = models.DateTimeField(_('cancelled at'), null=True, blank=True)

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('order')
        verbose_name_plural = _('orders')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['buyer'], name='core_order_buyer_idx'),
            models.Index(fields=['bicycle'], name='core_order_bicycle_idx'),
            models.Index(fields=['status'], name='core_order_status_idx'),
            models.Index(fields=['expires_at'], name='core_order_expires_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['bicycle'],
                name='unique_active_order_per_bicycle',
                condition=models.Q(status__in=['pending', 'processing'])
            )
        ]

    def __str__(self):
        return self.order_number

    def clean(self):
        """
        Validate amounts and status transitions.

        Raises:
            ValidationError: If totals do not add up or the status transition is invalid
        """
        super().clean()

        if self.total_price is not None and self.total_price < 0:
            raise ValidationError({
                'total_price': _('Total price cannot be negative.')
            })

        if None not in (self.subtotal, self.shipping_cost, self.tax, self.total_price):
            if self.subtotal + self.shipping_cost + self.tax != self.total_price:
                raise ValidationError({
                    'total_price': _('Total price must equal subtotal + shipping cost + tax.')
                })

        if self.pk is not None:
            old_status = Order.objects.filter(pk=self.pk).values_list('status', flat=True).first()
            if old_status is not None and old_status != self.status:
                if self.status not in self.VALID_TRANSITIONS.get(old_status, ()):
                    raise ValidationError({
                        'status': _(f'Invalid order status transition from {old_status} to {self.status}.')
                    })

    def save(self, *args, **kwargs):
        if self.expires_at is None:
            self.expires_at = self.payment_deadline
        self.full_clean(validate_constraints=False)
        super().save(*args, **kwargs)

    def can_transition_to(self, new_status):
        """
        Check if the order can move to new_status.

        Returns:
            tuple: (is_valid: bool, error_message: str or None)
        """
        if new_status == self.status:
            return False, f'Order is already {self.status}.'
        if new_status in self.VALID_TRANSITIONS.get(self.status, ()):
            return True, None
        return False, f'Invalid order status transition from {self.status} to {new_status}.'

    def is_active(self):
        return self.status in self.ACTIVE_STATUSES

    def is_expired(self, now=None):
        now = now or timezone.now()
        return self.expires_at is not None and self.expires_at < now

    def can_be_approved_by_admin(self):
        """Payment confirmed and bicycle still reserved for this order."""
        payment = getattr(self, 'payment', None)
        return (
            payment is not None
            and payment.status == OrderPayment.Status.PAID
            and self.bicycle.status == Bicycle.Status.RESERVED
        )

    @classmethod
    def generate_order_number(cls):
        """Generate an unused order number like ORD-20250601-A1B2C3."""
        date_part = timezone.localdate().strftime('%Y%m%d')
        while True:
            candidate = f"ORD-{date_part}-{secrets.token_hex(3).upper()}"
            if not cls.objects.filter(order_number=candidate).exists():
                return candidate


class OrderPayment(models.Model):
    """
    Offline bank-transfer payment for an order (one-to-one, deleted with it).

    Status lifecycle:
    - pending: waiting for the buyer's transfer
    - awaiting_confirmation: buyer submitted proof of transfer
    - paid: admin confirmed the transfer
    - failed: cancelled or expired before payment
    - refunded: sale rejected after payment

    Only proof metadata is kept here; the file lives in the storage layer.
    """

    class Status(models.TextChoices):
        PENDING = 'pending', _('Pending')
        AWAITING_CONFIRMATION = 'awaiting_confirmation', _('Awaiting confirmation')
        PAID = 'paid', _('Paid')
        FAILED = 'failed', _('Failed')
        REFUNDED = 'refunded', _('Refunded')

    class Method(models.TextChoices):
        BANK_TRANSFER = 'bank_transfer', _('Bank transfer')
        CREDIT_CARD = 'credit_card', _('Credit card')
        PAYPAL = 'paypal', _('PayPal')
        CASH_ON_DELIVERY = 'cash_on_delivery', _('Cash on delivery')

    class ProofStatus(models.TextChoices):
        NONE = 'none', _('No proof')
        PENDING = 'pending', _('Pending review')
        APPROVED = 'approved', _('Approved')
        REJECTED = 'rejected', _('Rejected')

    VALID_TRANSITIONS = {
        Status.PENDING: (Status.AWAITING_CONFIRMATION, Status.FAILED),
        Status.AWAITING_CONFIRMATION: (Status.PAID, Status.PENDING, Status.FAILED),
        Status.PAID: (Status.REFUNDED,),
        Status.FAILED: (),
        Status.REFUNDED: (),
    }

    order = models.OneToOneField(
        Order,
        on_delete=models.CASCADE,
        related_name='payment',
        help_text=_('Order this payment belongs to')
    )

    status = models.CharField(
        _('status'),
        max_length=30,
        choices=Status.choices,
        default=Status.PENDING
    )

    method = models.CharField(
        _('method'),
        max_length=30,
        choices=Method.choices,
        default=Method.BANK_TRANSFER
    )

    amount = models.DecimalField(
        _('amount'),
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'), message=_('Amount must be greater than 0.'))]
    )

    deadline = models.DateTimeField(_('deadline'))

    expires_at = models.DateTimeField(_('expires at'))

    instructions = models.JSONField(
        _('instructions'),
        default=dict,
        blank=True,
        help_text=_('Bank transfer instructions shown to the buyer')
    )

    paid_at = models.DateTimeField(_('paid at'), null=True, blank=True)

    failed_at = models.DateTimeField(_('failed at'), null=True, blank=True)

    refunded_at = models.DateTimeField(_('refunded at'), null=True, blank=True)

    failure_reason = models.CharField(_('failure reason'), max_length=255, blank=True, default='')

    proof_status = models.CharField(
        _('proof status'),
        max_length=20,
        choices=ProofStatus.choices,
        default=ProofStatus.NONE
    )

    proof_filename = models.CharField(_('proof filename'), max_length=255, blank=True, default='')

    proof_content_type = models.CharField(_('proof content type'), max_length=100, blank=True, default='')

    proof_size = models.PositiveIntegerField(_('proof size'), null=True, blank=True)

    proof_note = models.TextField(_('proof note'), blank=True, default='')

    proof_account_last_five = models.CharField(
        _('account last five digits'),
        max_length=5,
        blank=True,
        default=''
    )

    proof_uploaded_at = models.DateTimeField(_('proof uploaded at'), null=True, blank=True)

    proof_reviewed_at = models.DateTimeField(_('proof reviewed at'), null=True, blank=True)

    proof_reviewed_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='reviewed_payments',
        help_text=_('Admin who reviewed the payment proof')
    )

    proof_review_notes = models.TextField(_('proof review notes'), blank=True, default='')

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('order payment')
        verbose_name_plural = _('order payments')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status'], name='core_orderp_status_idx'),
            models.Index(fields=['expires_at'], name='core_orderp_expires_idx'),
        ]

    def __str__(self):
        return f"Payment for order {self.order_id} ({self.status})"

    def clean(self):
        """
        Validate status transitions.

        Raises:
            ValidationError: If the status transition is invalid
        """
        super().clean()

        if self.pk is not None:
            old_status = OrderPayment.objects.filter(pk=self.pk).values_list('status', flat=True).first()
            if old_status is not None and old_status != self.status:
                if self.status not in self.VALID_TRANSITIONS.get(old_status, ()):
                    raise ValidationError({
                        'status': _(f'Invalid payment status transition from {old_status} to {self.status}.')
                    })

    def save(self, *args, **kwargs):
        """Fill expiry and status timestamps, validate and save."""
        if self.expires_at is None:
            self.expires_at = self.deadline

        now = timezone.now()
        if self.status == self.Status.PAID and self.paid_at is None:
            self.paid_at = now
        elif self.status == self.Status.FAILED and self.failed_at is None:
            self.failed_at = now
        elif self.status == self.Status.REFUNDED and self.refunded_at is None:
            self.refunded_at = now

        self.full_clean()
        super().save(*args, **kwargs)

    def can_transition_to(self, new_status):
        """
        Check if the payment can move to new_status.

        Returns:
            tuple: (is_valid: bool, error_message: str or None)
        """
        if new_status == self.status:
            return False, f'Payment is already {self.status}.'
        if new_status in self.VALID_TRANSITIONS.get(self.status, ()):
            return True, None
        return False, f'Invalid payment status transition from {self.status} to {new_status}.'

    def is_expired(self, now=None):
        now = now or timezone.now()
        return self.expires_at is not None and self.expires_at < now

    def remaining_payment_hours(self, now=None):
        """Whole hours left before the deadline (0 once it has passed)."""
        now = now or timezone.now()
        if self.deadline is None or self.deadline <= now:
            return 0
        seconds = (self.deadline - now).total_seconds()
        return int(-(-seconds // 3600))

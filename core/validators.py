"""
Custom validators for offers, shipping addresses and payment proofs.
"""

import re
from decimal import Decimal, InvalidOperation

from django.core.exceptions import ValidationError

from .conf import marketplace_setting

SHIPPING_ADDRESS_FIELDS = (
    'full_name',
    'phone_number',
    'county',
    'district',
    'address_line1',
    'address_line2',
    'postal_code',
    'delivery_notes',
)

REQUIRED_DELIVERY_FIELDS = ('full_name', 'phone_number', 'county', 'address_line1')


def validate_offer_amount(value):
    """
    Validate an offer amount is a positive number.

    Args:
        value: Offer amount (Decimal, int or numeric string)

    Raises:
        ValidationError: If the amount is missing, not numeric or not greater than 0
    """
    if value is None or value == '':
        raise ValidationError(
            'Offer amount is required.',
            code='offer_amount_required'
        )

    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(
            'Offer amount must be a number.',
            code='offer_amount_invalid'
        )

    if not amount.is_finite() or amount <= 0:
        raise ValidationError(
            'Offer amount must be greater than 0.',
            code='offer_amount_not_positive'
        )


def validate_phone_number(value):
    """
    Validate phone number format.

    Accepts digits with optional spaces, dashes, parentheses and a leading plus.
    Requires at least 8 digits (Taiwanese landlines without area code).
    """
    if not value:
        return

    if not re.match(r'^[\d\s\-\+\(\)]+$', value):
        raise ValidationError(
            'Phone number can only contain digits, spaces, dashes, parentheses, and plus sign.',
            code='invalid_phone_chars'
        )

    digits = re.sub(r'\D', '', value)
    if len(digits) < 8:
        raise ValidationError(
            'Phone number must contain at least 8 digits.',
            code='phone_too_short'
        )


def sanitize_shipping_address(address):
    """
    Keep only the known shipping address keys with non-empty string values.

    County names are lowercased so they can be matched against the remote
    region list.

    Args:
        address: Mapping supplied by the client (may be None)

    Returns:
        dict: Cleaned address
    """
    if not isinstance(address, dict):
        return {}

    cleaned = {}
    for field in SHIPPING_ADDRESS_FIELDS:
        value = address.get(field)
        if value is None:
            continue
        value = str(value).strip()
        if not value:
            continue
        if field == 'county':
            value = value.lower()
        cleaned[field] = value
    return cleaned


def validate_delivery_address(address):
    """
    Validate an address is complete enough for assisted delivery.

    Args:
        address: Sanitized shipping address dict

    Raises:
        ValidationError: If a required field is missing or the phone is malformed
    """
    missing = [field for field in REQUIRED_DELIVERY_FIELDS if not address.get(field)]
    if missing:
        raise ValidationError(
            f'Shipping address is missing required fields: {", ".join(missing)}.',
            code='shipping_address_incomplete'
        )
    validate_phone_number(address.get('phone_number'))


def validate_account_last_five(value):
    """Validate the last five digits of the transferring bank account."""
    if not value:
        return
    if not re.fullmatch(r'\d{5}', value):
        raise ValidationError(
            'Account digits must be exactly 5 numbers.',
            code='invalid_account_digits'
        )


def validate_payment_proof(content_type, size):
    """
    Validate payment proof file metadata.

    Only metadata is checked here; the file itself is stored by the storage layer.

    Checks:
    - Content type (jpeg, png, gif, pdf by default)
    - File size (5MB by default)

    Args:
        content_type: MIME type reported for the uploaded file
        size: File size in bytes

    Raises:
        ValidationError: If the proof metadata is invalid
    """
    allowed_types = marketplace_setting('PAYMENT_PROOF_CONTENT_TYPES')
    if content_type not in allowed_types:
        raise ValidationError(
            f'Invalid file format. Allowed formats: {", ".join(allowed_types)}',
            code='invalid_proof_content_type'
        )

    max_size = marketplace_setting('PAYMENT_PROOF_MAX_SIZE')
    if size is None or size <= 0:
        raise ValidationError(
            'Payment proof file is empty.',
            code='empty_proof'
        )
    if size > max_size:
        raise ValidationError(
            f'File size cannot exceed {max_size / (1024 * 1024):.0f}MB. '
            f'Current size: {size / (1024 * 1024):.2f}MB',
            code='proof_too_large'
        )

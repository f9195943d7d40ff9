"""
Error taxonomy for the negotiation and order workflow.

Every domain error is a DRF APIException so views can let it propagate and the
API renders a typed, user-displayable body:

    {"detail": "...", "code": "duplicate_pending_offer", "existing_offer": {...}}

Families:
- ValidationError (400): malformed or missing input, SelfTradeError
- StateConflictError (409): DuplicatePendingOfferError, BicycleUnavailableError,
  InvalidStateError, PreconditionFailedError, BicycleStateConflictError
- ForbiddenError (403), NotFoundError (404)
- TransientInfrastructureError (503): lock timeouts, database unavailable
"""

import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import InterfaceError, OperationalError
from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class MarketplaceError(APIException):
    """
    Base class for marketplace errors.

    Keyword arguments beyond detail/code are kept as `payload` and merged into
    the JSON error body.
    """

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'The request could not be completed.'
    default_code = 'marketplace_error'

    def __init__(self, detail=None, code=None, **payload):
        super().__init__(detail=detail, code=code)
        self.payload = payload


class InputValidationError(MarketplaceError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Invalid input.'
    default_code = 'invalid'

    @classmethod
    def from_django(cls, exc, field=None):
        """
        Wrap a django.core.exceptions.ValidationError raised by a validator.

        Args:
            exc: The Django ValidationError
            field: Optional input field name, added to the payload

        Returns:
            InputValidationError
        """
        code = getattr(exc, 'code', None) or cls.default_code
        payload = {'field': field} if field else {}
        return cls(' '.join(exc.messages), code=code, **payload)


class SelfTradeError(InputValidationError):
    default_detail = 'You cannot make an offer on or buy your own bicycle.'
    default_code = 'self_trade'


class StateConflictError(MarketplaceError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'The target is not in a state that allows this action.'
    default_code = 'state_conflict'


class DuplicatePendingOfferError(StateConflictError):
    default_detail = (
        'You already have a pending offer on this bicycle. '
        'Wait for the seller to respond before making another offer.'
    )
    default_code = 'duplicate_pending_offer'


class BicycleUnavailableError(StateConflictError):
    default_detail = 'This bicycle is no longer available.'
    default_code = 'bicycle_unavailable'


class InvalidStateError(StateConflictError):
    default_detail = 'This action is not allowed in the current state.'
    default_code = 'invalid_state'


class PreconditionFailedError(StateConflictError):
    default_detail = 'The order does not meet the requirements for this action.'
    default_code = 'precondition_failed'


class BicycleStateConflictError(StateConflictError):
    """Raised by the availability store when a status guard does not hold."""

    default_detail = 'Bicycle status changed unexpectedly.'
    default_code = 'bicycle_state_conflict'


class ForbiddenError(MarketplaceError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'You do not have permission to perform this action.'
    default_code = 'forbidden'


class NotFoundError(MarketplaceError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Not found.'
    default_code = 'not_found'


class TransientInfrastructureError(MarketplaceError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = 'The service is temporarily unavailable. Please retry.'
    default_code = 'temporarily_unavailable'


def marketplace_exception_handler(exc, context):
    """
    DRF exception handler for the marketplace API.

    - Database OperationalError/InterfaceError become TransientInfrastructureError
      (the transaction has already been rolled back, retrying is safe).
    - Django model ValidationErrors become InputValidationError (400).
    - Marketplace errors render detail, code and payload.
    - Anything DRF does not know is logged with request context and returned
      as a generic 500 without internals.

    Args:
        exc: The raised exception
        context: DRF handler context (view, request, args, kwargs)

    Returns:
        Response: Error response
    """
    view = context.get('view')
    request = context.get('request')
    view_name = view.__class__.__name__ if view is not None else 'unknown'
    user = getattr(request, 'user', None)
    user_id = getattr(user, 'id', None)

    if isinstance(exc, (OperationalError, InterfaceError)):
        logger.warning(
            f"Transient database error in {view_name}: {exc}, "
            f"Path: {getattr(request, 'path', '')}, User ID: {user_id}"
        )
        exc = TransientInfrastructureError()

    if isinstance(exc, DjangoValidationError):
        logger.warning(
            f"Model validation failed in {view_name}: {exc.messages}, "
            f"Path: {getattr(request, 'path', '')}, User ID: {user_id}"
        )
        exc = InputValidationError.from_django(exc)

    response = exception_handler(exc, context)

    if response is None:
        logger.error(
            f"Unexpected error in {view_name}: {exc!r}, "
            f"Path: {getattr(request, 'path', '')}, "
            f"Method: {getattr(request, 'method', '')}, "
            f"Kwargs: {context.get('kwargs')}, User ID: {user_id}",
            exc_info=(type(exc), exc, exc.__traceback__)
        )
        return Response(
            {'detail': 'An unexpected error occurred.', 'code': 'internal_error'},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    if isinstance(exc, MarketplaceError):
        response.data = {
            'detail': str(exc.detail),
            'code': exc.get_codes(),
            **exc.payload,
        }
    elif isinstance(exc, APIException) and isinstance(response.data, dict) and 'detail' in response.data:
        response.data.setdefault('code', exc.get_codes())

    return response

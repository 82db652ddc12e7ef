"""
Business exceptions shared by the order, checkout and payment services.

Every exception carries an HTTP status code, a stable error code and a
localized, user-facing message. Views turn them into ``{message, code}``
responses; anything that is not a ``ServiceError`` is treated as an internal
error and never shown to the caller verbatim.
"""
from django.utils.translation import gettext_lazy as _
from rest_framework import status


class ServiceError(Exception):
    """Base class for errors that are safe to report to API callers."""
    status_code = status.HTTP_400_BAD_REQUEST
    code = 'error'
    default_message = _('The request could not be processed.')

    def __init__(self, message=None, **extra):
        self.message = message if message is not None else self.default_message
        self.extra = extra
        super().__init__(str(self.message))

    def to_dict(self):
        payload = {'message': str(self.message), 'code': self.code}
        payload.update(self.extra)
        return payload


class OrderValidationError(ServiceError):
    """Raised when checkout or order input is invalid."""
    code = 'validation_error'
    default_message = _('The submitted order is invalid.')


class OutOfStock(ServiceError):
    """Raised when a variant does not have enough stock for a reservation."""
    code = 'out_of_stock'

    def __init__(self, variant_id, requested, available, variant_name=''):
        self.variant_id = variant_id
        self.requested = requested
        self.available = available
        label = variant_name or f'#{variant_id}'
        super().__init__(
            _('Insufficient stock for %(item)s: requested %(requested)s, available %(available)s.') % {
                'item': label,
                'requested': requested,
                'available': available,
            },
            variant_id=variant_id,
            requested=requested,
            available=available,
        )


class InvalidPromoCode(ServiceError):
    """Raised when a promo code cannot be applied; ``reason`` is machine readable."""
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = 'invalid_promo_code'

    def __init__(self, reason, message):
        self.reason = reason
        super().__init__(message, reason=reason)


class Forbidden(ServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    code = 'forbidden'
    default_message = _('You are not allowed to perform this action.')


class ResourceNotFound(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    code = 'not_found'
    default_message = _('The requested resource was not found.')


class InvalidStateTransition(ServiceError):
    """Raised when an order cannot move from its current status to the requested one."""
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = 'invalid_state_transition'

    def __init__(self, current, target, message=None):
        self.current = current
        self.target = target
        super().__init__(
            message or _('Order cannot change from "%(current)s" to "%(target)s".') % {
                'current': current,
                'target': target,
            },
            current_status=str(current),
            target_status=str(target),
        )


class CancellationNotAllowed(ServiceError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = 'cancellation_not_allowed'
    default_message = _('This order cannot be cancelled.')


class AlreadyReviewed(ServiceError):
    status_code = status.HTTP_409_CONFLICT
    code = 'already_reviewed'
    default_message = _('This cancellation request has already been reviewed.')


class NoPendingFinalPayment(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    code = 'no_pending_final_payment'
    default_message = _('There is no outstanding final payment for this order.')


class GatewayError(ServiceError):
    """The payment provider was unreachable or answered with malformed data."""
    status_code = status.HTTP_502_BAD_GATEWAY
    code = 'gateway_error'
    default_message = _('The payment provider is temporarily unavailable. Please try again.')


class InvalidSignature(ServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    code = 'invalid_signature'
    default_message = _('Notification signature could not be verified.')

"""
Order status machine.

Order Status Flow:
    Pending Payment -> Partially Paid (down payment received, webhook)
    Pending Payment | Partially Paid -> Paid (full or final payment received, webhook)
    Pending Payment | Partially Paid -> Failed (payment cancelled/denied/expired, webhook)
    Failed -> Pending Payment | Partially Paid (customer retries the payment)
    Paid -> Processing -> Design Approval -> In Production -> Shipped -> Delivered -> Completed (admin)
    pre-production statuses -> Cancelled (approved cancellation request)
    Cancelled -> Refunded (refund completed)

The stored strings are read by reporting and export tooling and must not change.
"""
import logging

from django.db import models

from core.exceptions import InvalidStateTransition

logger = logging.getLogger(__name__)


class OrderStatus(models.TextChoices):
    PENDING_PAYMENT = 'Pending Payment', 'Pending Payment'
    PARTIALLY_PAID = 'Partially Paid', 'Partially Paid'
    PAID = 'Paid', 'Paid'
    PROCESSING = 'Processing', 'Processing'
    DESIGN_APPROVAL = 'Design Approval', 'Design Approval'
    IN_PRODUCTION = 'In Production', 'In Production'
    SHIPPED = 'Shipped', 'Shipped'
    DELIVERED = 'Delivered', 'Delivered'
    COMPLETED = 'Completed', 'Completed'
    CANCELLED = 'Cancelled', 'Cancelled'
    FAILED = 'Failed', 'Failed'
    REFUNDED = 'Refunded', 'Refunded'


class OrderPaymentStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    PARTIALLY_PAID = 'partially_paid', 'Partially paid'
    PAID = 'paid', 'Paid'
    FAILED = 'failed', 'Failed'
    CANCELLED = 'cancelled', 'Cancelled'
    REFUNDED = 'refunded', 'Refunded'


class PaymentStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    PAID = 'paid', 'Paid'
    FAILED = 'failed', 'Failed'
    CANCELLED = 'cancelled', 'Cancelled'
    REFUNDED = 'refunded', 'Refunded'


class PaymentType(models.TextChoices):
    FULL = 'full', 'Full payment'
    DOWN_PAYMENT = 'dp', 'Down payment'
    FINAL = 'final', 'Final payment'


class PaymentOption(models.TextChoices):
    FULL = 'full', 'Full payment'
    DP_30 = 'dp_30', 'Down payment 30%'
    DP_50 = 'dp_50', 'Down payment 50%'

    @property
    def payment_type(self):
        return PaymentType.FULL if self == PaymentOption.FULL else PaymentType.DOWN_PAYMENT


S = OrderStatus

ALLOWED_TRANSITIONS = {
    S.PENDING_PAYMENT: {S.PARTIALLY_PAID, S.PAID, S.FAILED, S.CANCELLED},
    S.PARTIALLY_PAID: {S.PAID, S.FAILED, S.CANCELLED},
    S.PAID: {S.PROCESSING, S.CANCELLED},
    S.PROCESSING: {S.DESIGN_APPROVAL, S.IN_PRODUCTION, S.CANCELLED},
    S.DESIGN_APPROVAL: {S.IN_PRODUCTION, S.CANCELLED},
    S.IN_PRODUCTION: {S.SHIPPED},
    S.SHIPPED: {S.DELIVERED},
    S.DELIVERED: {S.COMPLETED},
    S.COMPLETED: set(),
    S.FAILED: {S.PENDING_PAYMENT, S.PARTIALLY_PAID, S.PAID, S.CANCELLED},
    S.CANCELLED: {S.REFUNDED},
    S.REFUNDED: set(),
}

# Admin-driven fulfilment chain
FULFILMENT_STATUSES = frozenset({
    S.PROCESSING, S.DESIGN_APPROVAL, S.IN_PRODUCTION, S.SHIPPED, S.DELIVERED, S.COMPLETED,
})

# Statuses in which at least part of the order has been paid for
PAID_STATUSES = frozenset({S.PARTIALLY_PAID, S.PAID}) | FULFILMENT_STATUSES

_unmapped = set(OrderStatus) - set(ALLOWED_TRANSITIONS)
if _unmapped:
    raise RuntimeError(f"Order statuses without transition rules: {sorted(_unmapped)}")


def can_transition(current, target) -> bool:
    return OrderStatus(target) in ALLOWED_TRANSITIONS[OrderStatus(current)]


def transition(order, target, *, actor=None, reason='', properties=None, save=True):
    """
    Move ``order`` to ``target`` and write an audit entry.

    Extra fields changed on ``order`` by the caller are saved along with the
    status when listed in ``properties['update_fields']``.

    Raises:
        InvalidStateTransition: ``target`` is not reachable from the current status.
    """
    from .audit import log_activity

    current = OrderStatus(order.status)
    target = OrderStatus(target)
    if not can_transition(current, target):
        logger.warning(
            f"Rejected transition for order {order.order_number}: {current} -> {target}"
        )
        raise InvalidStateTransition(current, target)

    properties = dict(properties or {})
    update_fields = ['status', 'updated_at'] + list(properties.pop('update_fields', []))

    order.status = target
    if save:
        order.save(update_fields=update_fields)

    log_activity(
        log_type='order_status',
        action='changed',
        subject=order,
        user=actor,
        description=f"Order {order.order_number}: {current} -> {target}" + (f" ({reason})" if reason else ''),
        properties={
            'order_number': order.order_number,
            'old_status': str(current),
            'new_status': str(target),
            'reason': reason,
            **properties,
        },
    )
    logger.info(f"Order {order.order_number} status changed: {current} -> {target}")
    return order

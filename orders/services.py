"""
Order read models and admin fulfilment updates.

Checkout, payment reconciliation and cancellation live in their own modules
(``checkout``, ``webhooks``, ``cancellation``).
"""
import logging
from typing import Dict

from django.db import transaction
from django.utils.translation import gettext as _

from core.exceptions import Forbidden, InvalidStateTransition
from .models import Order
from .state import FULFILMENT_STATUSES, OrderStatus, transition

logger = logging.getLogger(__name__)


def advance_order_status(order: Order, new_status, admin, reason: str = '') -> Order:
    """
    Move an order along the fulfilment chain (Paid -> Processing -> ... -> Completed).

    Raises:
        Forbidden: ``admin`` is not staff.
        InvalidStateTransition: ``new_status`` is not a fulfilment status or not
            reachable from the current one.
    """
    if not (admin and admin.is_staff):
        raise Forbidden()

    try:
        target = OrderStatus(new_status)
    except ValueError:
        raise InvalidStateTransition(order.status, new_status, _('Unknown order status "%(status)s".') % {
            'status': new_status,
        })
    if target not in FULFILMENT_STATUSES:
        raise InvalidStateTransition(
            order.status, target,
            _('"%(status)s" is set by payments or cancellations and cannot be set manually.') % {'status': target},
        )

    with transaction.atomic():
        order = Order.objects.select_for_update().get(pk=order.pk)
        transition(order, target, actor=admin, reason=reason or 'updated by admin')
        if target == OrderStatus.SHIPPED:
            from .tasks import queue_notification
            order_id = order.id
            transaction.on_commit(lambda: queue_notification(order_id, 'order_shipped'))

    return order


def get_order_summary(order_id: int) -> Dict:
    """
    Get detailed order summary with optimized queries.

    Uses select_related and prefetch_related to minimize database hits.
    """
    order = Order.objects.select_related('promo_code').prefetch_related(
        'items', 'payments',
    ).get(id=order_id)

    return {
        'id': order.id,
        'order_number': order.order_number,
        'status': order.status,
        'payment_status': order.payment_status,
        'payment_option': order.payment_option,
        'subtotal_amount': str(order.subtotal_amount),
        'discount_amount': str(order.discount_amount),
        'shipping_cost': str(order.shipping_cost),
        'total_amount': str(order.total_amount),
        'amount_paid': str(order.amount_paid),
        'remaining_balance': str(order.remaining_balance),
        'promo_code': order.promo_code.code if order.promo_code else None,
        'item_count': len(order.items.all()),
        'items': [
            {
                'product_name': item.product_name,
                'variant_name': item.variant_name,
                'sku': item.sku,
                'quantity': item.quantity,
                'unit_price': str(item.unit_price),
                'sub_total': str(item.sub_total),
            }
            for item in order.items.all()
        ],
        'payments': [
            {
                'id': payment.id,
                'payment_type': payment.payment_type,
                'amount': str(payment.amount),
                'status': payment.status,
            }
            for payment in order.payments.all()
        ],
        'created_at': order.created_at.isoformat(),
        'updated_at': order.updated_at.isoformat(),
    }

"""
Order cancellation workflow.

Customers ask for a cancellation; staff approve or reject it once. Approval
cancels the order, puts the stock back and records the refund owed. The
refund itself is paid out through the gateway dashboard and confirmed later
by a refund notification or by staff.

Lock order: cancellation request -> order -> payments -> variants.
"""
import logging
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone
from django.utils.translation import gettext as _

from catalog.services import restore_stock
from core.exceptions import (
    AlreadyReviewed,
    CancellationNotAllowed,
    Forbidden,
    OrderValidationError,
)
from core.money import ZERO, as_amount, to_decimal
from .audit import (
    log_activity,
    log_cancellation_approved,
    log_cancellation_rejected,
    log_cancellation_requested,
)
from .config import OrderConfig
from .models import Order, OrderCancellationRequest
from .state import OrderPaymentStatus, OrderStatus, PaymentStatus, can_transition, transition

logger = logging.getLogger(__name__)

MIN_REASON_LENGTH = 10


def _paid_total(order) -> Decimal:
    total = order.payments.filter(status=PaymentStatus.PAID).aggregate(total=Sum('amount'))['total']
    return as_amount(total)


def _notify(order_id, event):
    from .tasks import queue_notification
    transaction.on_commit(lambda: queue_notification(order_id, event))


class CancellationService:

    def __init__(self, config: Optional[OrderConfig] = None):
        self.config = config or OrderConfig.from_settings()

    def _ineligibility(self, order, now=None) -> Optional[str]:
        now = now or timezone.now()
        if order.status == OrderStatus.FAILED:
            return _('This order failed and can no longer be cancelled. Please contact us about any payment made.')
        if order.status in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
            return _('This order has already been cancelled or refunded.')
        if order.cancellation_requests.filter(status=OrderCancellationRequest.Status.PENDING).exists():
            return _('This order already has a cancellation request being processed.')
        status = OrderStatus(order.status)
        if status not in self.config.cancellable_statuses or not can_transition(status, OrderStatus.CANCELLED):
            return _('This order is already in production and can no longer be cancelled.')

        window = self.config.cancellation_window_hours
        if window is not None and _paid_total(order) > ZERO:
            if now - order.created_at > timedelta(hours=window):
                return _('Paid orders can only be cancelled within %(hours)s hours.') % {'hours': window}
        return None

    def can_request_cancellation(self, order, now=None) -> bool:
        return self._ineligibility(order, now) is None

    def get_ineligibility_reason(self, order, now=None) -> str:
        return self._ineligibility(order, now) or _('This order is not eligible for cancellation.')

    def create_cancellation_request(self, order, requester, reason, request=None) -> OrderCancellationRequest:
        """
        Record a customer's cancellation request. The order itself is not changed.

        Raises:
            Forbidden: ``requester`` does not own the order.
            OrderValidationError: Reason shorter than 10 characters.
            CancellationNotAllowed: The order is not eligible.
        """
        if not order.is_owned_by(requester):
            raise Forbidden()
        reason = (reason or '').strip()
        if len(reason) < MIN_REASON_LENGTH:
            raise OrderValidationError(
                _('Please give a reason of at least %(count)s characters.') % {'count': MIN_REASON_LENGTH}
            )

        with transaction.atomic():
            # Serializes concurrent requests for the same order
            order = Order.objects.select_for_update().get(pk=order.pk)
            problem = self._ineligibility(order)
            if problem is not None:
                logger.warning(f"Cancellation refused for order {order.order_number}: {problem}")
                raise CancellationNotAllowed(problem)

            paid = _paid_total(order)
            cancellation = OrderCancellationRequest.objects.create(
                order=order,
                requested_by=requester,
                reason=reason,
                order_status_before=order.status,
                refund_amount=paid if paid > ZERO else None,
            )
            log_cancellation_requested(cancellation, requester, request=request)
            _notify(order.id, 'cancellation_requested')

        logger.info(f"Cancellation request {cancellation.id} created for order {order.order_number}")
        return cancellation

    def _release_order(self, order) -> None:
        """Put reserved stock back and close the order's open payments."""
        for item in order.items.all():
            restore_stock(item.variant_id, item.quantity)
        closed = order.payments.filter(
            status__in=[PaymentStatus.PENDING, PaymentStatus.FAILED],
        ).update(status=PaymentStatus.CANCELLED, updated_at=timezone.now())
        if closed:
            logger.info(f"Cancelled {closed} open payment(s) of order {order.order_number}")

    def approve(self, cancellation, admin, notes=None, refund_amount=None, request=None) -> OrderCancellationRequest:
        """
        Approve a pending request: cancel the order, restore stock, record the refund owed.

        Raises:
            Forbidden: ``admin`` is not staff.
            AlreadyReviewed: The request was already decided.
            InvalidStateTransition: The order moved past the cancellable statuses.
            OrderValidationError: ``refund_amount`` is negative or above what was paid.
        """
        if not (admin and admin.is_staff):
            raise Forbidden()

        with transaction.atomic():
            cancellation = OrderCancellationRequest.objects.select_for_update().get(pk=cancellation.pk)
            if not cancellation.is_pending:
                raise AlreadyReviewed()
            order = Order.objects.select_for_update().get(pk=cancellation.order_id)

            paid = _paid_total(order)
            refund = paid if refund_amount is None else to_decimal(refund_amount)
            if refund < ZERO or refund > paid:
                raise OrderValidationError(
                    _('Refund amount must be between 0 and %(paid)s.') % {'paid': paid}
                )

            if paid == ZERO:
                order.payment_status = OrderPaymentStatus.CANCELLED
            transition(
                order, OrderStatus.CANCELLED, actor=admin, reason='cancellation approved',
                properties={'update_fields': ['payment_status'], 'cancellation_request_id': cancellation.id},
            )
            self._release_order(order)

            cancellation.mark_reviewed(OrderCancellationRequest.Status.APPROVED, admin, notes)
            cancellation.refund_amount = refund
            cancellation.refund_initiated = refund > ZERO
            cancellation.refund_status = OrderCancellationRequest.RefundStatus.PENDING if refund > ZERO else None
            cancellation.stock_restored = True
            cancellation.save()

            log_cancellation_approved(cancellation, admin, request=request)
            _notify(order.id, 'cancellation_approved')

        logger.info(
            f"Cancellation request {cancellation.id} approved by {admin.pk}: "
            f"order {order.order_number} cancelled, refund owed {refund}"
        )
        return cancellation

    def reject(self, cancellation, admin, notes, request=None) -> OrderCancellationRequest:
        if not (admin and admin.is_staff):
            raise Forbidden()
        notes = (notes or '').strip()
        if not notes:
            raise OrderValidationError(_('A note explaining the rejection is required.'))

        with transaction.atomic():
            cancellation = OrderCancellationRequest.objects.select_for_update().get(pk=cancellation.pk)
            if not cancellation.is_pending:
                raise AlreadyReviewed()
            cancellation.mark_reviewed(OrderCancellationRequest.Status.REJECTED, admin, notes)
            cancellation.save()

            log_cancellation_rejected(cancellation, admin, request=request)
            _notify(cancellation.order_id, 'cancellation_rejected')

        logger.info(f"Cancellation request {cancellation.id} rejected by {admin.pk}")
        return cancellation

    def complete_refund(self, cancellation, transaction_id, actor=None) -> OrderCancellationRequest:
        """
        Mark the refund of an approved cancellation as paid out and move the
        order to Refunded.
        """
        if actor is not None and not actor.is_staff:
            raise Forbidden()

        refundable = (
            OrderCancellationRequest.RefundStatus.PENDING,
            OrderCancellationRequest.RefundStatus.PROCESSING,
        )
        with transaction.atomic():
            cancellation = OrderCancellationRequest.objects.select_for_update().get(pk=cancellation.pk)
            if cancellation.status != OrderCancellationRequest.Status.APPROVED or cancellation.refund_status not in refundable:
                raise OrderValidationError(_('There is no pending refund for this cancellation request.'))
            order = Order.objects.select_for_update().get(pk=cancellation.order_id)

            order.payment_status = OrderPaymentStatus.REFUNDED
            transition(
                order, OrderStatus.REFUNDED, actor=actor, reason='refund completed',
                properties={'update_fields': ['payment_status'], 'refund_transaction_id': transaction_id},
            )
            order.payments.filter(status=PaymentStatus.PAID).update(
                status=PaymentStatus.REFUNDED, updated_at=timezone.now(),
            )

            cancellation.refund_status = OrderCancellationRequest.RefundStatus.COMPLETED
            cancellation.refund_transaction_id = transaction_id or ''
            cancellation.save(update_fields=['refund_status', 'refund_transaction_id', 'updated_at'])

            log_activity(
                log_type='order_cancellation',
                action='refund_completed',
                subject=cancellation,
                user=actor,
                description=f"Refund of {cancellation.refund_amount} completed for order #{order.order_number}",
                properties={
                    'order_id': order.id,
                    'order_number': order.order_number,
                    'refund_amount': str(cancellation.refund_amount),
                    'refund_transaction_id': transaction_id,
                },
            )

        logger.info(f"Refund completed for order {order.order_number} ({transaction_id})")
        return cancellation

    def cancel_unpaid_order(self, order, reason='payment window expired') -> bool:
        """
        Cancel an order that never received money and release its stock.
        Returns False when the order was paid or moved on in the meantime.
        """
        with transaction.atomic():
            order = Order.objects.select_for_update().get(pk=order.pk)
            if order.status not in (OrderStatus.PENDING_PAYMENT, OrderStatus.FAILED) or _paid_total(order) > ZERO:
                logger.info(f"Order {order.order_number} no longer unpaid ({order.status}), not cancelling")
                return False

            order.payment_status = OrderPaymentStatus.CANCELLED
            transition(
                order, OrderStatus.CANCELLED, reason=reason,
                properties={'update_fields': ['payment_status']},
            )
            self._release_order(order)

        logger.info(f"Unpaid order {order.order_number} cancelled: {reason}")
        return True

"""
Payment notification reconciliation.

Gateways deliver notifications at least once and in any order, so every
notification is applied under row locks (Order first, then Payment, the same
order cancellation approval uses) and checked against the payment's current
status before anything changes:

    success  + payment already paid/refunded -> duplicate, nothing happens
    failure  + payment already failed        -> duplicate
    failure  + payment already paid          -> ignored, a success is never downgraded
    failure  for an older gateway order id   -> ignored, the payment was retried since
    refund                                   -> completes a pending cancellation refund
    pending / unknown                        -> ignored
"""
import logging
from dataclasses import dataclass
from functools import partial
from typing import Optional

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from core.exceptions import InvalidStateTransition
from core.money import as_amount
from .audit import log_activity
from .gateways import GatewayNotification, Outcome, PaymentGateway
from .models import Order, OrderCancellationRequest, Payment
from .state import (
    OrderPaymentStatus,
    OrderStatus,
    PaymentStatus,
    PaymentType,
    can_transition,
    transition,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileResult:
    PROCESSED = 'processed'
    DUPLICATE = 'duplicate'
    IGNORED = 'ignored'
    NOT_FOUND = 'not_found'

    outcome: str
    payment_id: Optional[int] = None
    order_id: Optional[int] = None
    detail: str = ''


class PaymentReconciler:

    def __init__(self, gateway: PaymentGateway, cancellation_service=None):
        self.gateway = gateway
        self._cancellation_service = cancellation_service

    @property
    def cancellation_service(self):
        if self._cancellation_service is None:
            from .cancellation import CancellationService
            self._cancellation_service = CancellationService()
        return self._cancellation_service

    def reconcile(self, payload) -> ReconcileResult:
        """
        Apply one gateway notification.

        Raises:
            InvalidSignature: Signature missing or wrong; nothing is changed.
            GatewayError: Payload is malformed.
        """
        notification = self.gateway.parse_notification(payload)
        payment_id = self.gateway.extract_payment_id(notification.gateway_order_id)
        logger.info(
            f"Payment notification for {notification.gateway_order_id}: "
            f"{notification.transaction_status}/{notification.fraud_status or '-'} -> {notification.outcome.value}"
        )

        if payment_id is None:
            logger.warning(f"Cannot derive payment id from gateway order {notification.gateway_order_id}")
            return ReconcileResult(ReconcileResult.NOT_FOUND)

        order_id = Payment.objects.filter(pk=payment_id).values_list('order_id', flat=True).first()
        if order_id is None:
            logger.warning(f"Payment {payment_id} from notification {notification.gateway_order_id} not found")
            return ReconcileResult(ReconcileResult.NOT_FOUND, payment_id=payment_id)

        if notification.outcome == Outcome.REFUND:
            return self._handle_refund(order_id, payment_id, notification)

        with transaction.atomic():
            order = Order.objects.select_for_update().get(pk=order_id)
            payment = Payment.objects.select_for_update().get(pk=payment_id)

            payment.raw_response = notification.raw
            payment.save(update_fields=['raw_response', 'updated_at'])

            if notification.outcome == Outcome.SUCCESS:
                return self._handle_success(order, payment, notification)
            if notification.outcome == Outcome.FAILURE:
                return self._handle_failure(order, payment, notification)

        logger.info(f"Notification {notification.gateway_order_id} needs no action ({notification.transaction_status})")
        return ReconcileResult(ReconcileResult.IGNORED, payment_id, order_id, notification.transaction_status)

    def _move_order(self, order, target, payment_status, payment, notification) -> bool:
        previous_payment_status = order.payment_status
        order.payment_status = payment_status
        try:
            transition(
                order, target,
                reason=f"payment notification {notification.gateway_order_id}",
                properties={
                    'update_fields': ['payment_status'],
                    'payment_id': payment.id,
                    'payment_type': payment.payment_type,
                    'transaction_status': notification.transaction_status,
                },
            )
        except InvalidStateTransition:
            order.payment_status = previous_payment_status
            return False
        return True

    def _handle_success(self, order, payment, notification: GatewayNotification) -> ReconcileResult:
        if payment.status in (PaymentStatus.PAID, PaymentStatus.REFUNDED):
            logger.info(
                f"Payment {payment.id} already {payment.status}, "
                f"notification {notification.gateway_order_id} is a replay"
            )
            return ReconcileResult(ReconcileResult.DUPLICATE, payment.id, order.id)

        if notification.gross_amount != payment.amount:
            logger.warning(
                f"Payment {payment.id} amount {payment.amount} differs from notified "
                f"gross amount {notification.gross_amount}"
            )

        payment.status = PaymentStatus.PAID
        payment.paid_at = timezone.now()
        payment.gateway_transaction_id = notification.gateway_transaction_id
        payment.gateway_payment_method = notification.payment_method
        payment.save(update_fields=[
            'status', 'paid_at', 'gateway_transaction_id', 'gateway_payment_method', 'updated_at',
        ])
        logger.info(f"Payment {payment.id} ({payment.payment_type}) of order {order.order_number} paid")

        if payment.payment_type == PaymentType.DOWN_PAYMENT:
            moved = self._move_order(
                order, OrderStatus.PARTIALLY_PAID, OrderPaymentStatus.PARTIALLY_PAID, payment, notification,
            )
            if moved:
                self._create_final_payment(order)
        else:
            moved = self._move_order(order, OrderStatus.PAID, OrderPaymentStatus.PAID, payment, notification)
            if moved:
                from .tasks import dispatch_post_payment
                transaction.on_commit(partial(dispatch_post_payment, order.id))

        if not moved:
            logger.warning(
                f"Payment {payment.id} received for order {order.order_number} in status "
                f"{order.status}; manual refund required"
            )
            log_activity(
                log_type='payment',
                action='requires_refund',
                subject=order,
                description=f"Payment received for order {order.order_number} after it was {order.status}",
                properties={
                    'order_number': order.order_number,
                    'order_status': order.status,
                    'payment_id': payment.id,
                    'amount': str(payment.amount),
                    'gateway_order_id': notification.gateway_order_id,
                },
            )

        return ReconcileResult(ReconcileResult.PROCESSED, payment.id, order.id)

    def _create_final_payment(self, order) -> Optional[Payment]:
        paid = order.payments.filter(status=PaymentStatus.PAID).aggregate(total=Sum('amount'))['total']
        remaining = order.total_amount - as_amount(paid)
        if remaining <= 0:
            return None
        if order.payments.filter(
            payment_type=PaymentType.FINAL,
            status__in=[PaymentStatus.PENDING, PaymentStatus.PAID],
        ).exists():
            return None

        final = Payment.objects.create(
            order=order,
            amount=remaining,
            payment_type=PaymentType.FINAL,
            status=PaymentStatus.PENDING,
        )
        logger.info(f"Final payment {final.id} of {remaining} created for order {order.order_number}")
        return final

    def _handle_failure(self, order, payment, notification: GatewayNotification) -> ReconcileResult:
        if payment.status in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
            return ReconcileResult(ReconcileResult.DUPLICATE, payment.id, order.id)
        if payment.status in (PaymentStatus.PAID, PaymentStatus.REFUNDED):
            logger.warning(
                f"Ignoring {notification.transaction_status} for payment {payment.id}, already {payment.status}"
            )
            return ReconcileResult(ReconcileResult.IGNORED, payment.id, order.id, 'already paid')
        if payment.transaction_id and payment.transaction_id != notification.gateway_order_id:
            logger.info(
                f"Ignoring {notification.transaction_status} for superseded gateway order "
                f"{notification.gateway_order_id}, payment {payment.id} now uses {payment.transaction_id}"
            )
            return ReconcileResult(ReconcileResult.IGNORED, payment.id, order.id, 'superseded')

        payment.status = PaymentStatus.FAILED
        payment.gateway_transaction_id = notification.gateway_transaction_id
        payment.gateway_payment_method = notification.payment_method
        payment.save(update_fields=['status', 'gateway_transaction_id', 'gateway_payment_method', 'updated_at'])

        down_payment_received = order.payments.filter(
            payment_type=PaymentType.DOWN_PAYMENT, status=PaymentStatus.PAID,
        ).exists()
        payment_status = OrderPaymentStatus.PARTIALLY_PAID if down_payment_received else OrderPaymentStatus.FAILED

        if can_transition(order.status, OrderStatus.FAILED):
            self._move_order(order, OrderStatus.FAILED, payment_status, payment, notification)
        else:
            logger.warning(
                f"Payment {payment.id} failed but order {order.order_number} stays {order.status}"
            )

        logger.info(f"Payment {payment.id} of order {order.order_number} failed ({notification.transaction_status})")
        return ReconcileResult(ReconcileResult.PROCESSED, payment.id, order.id)

    def _handle_refund(self, order_id, payment_id, notification: GatewayNotification) -> ReconcileResult:
        cancellation = OrderCancellationRequest.objects.filter(
            order_id=order_id,
            status=OrderCancellationRequest.Status.APPROVED,
            refund_status__in=[
                OrderCancellationRequest.RefundStatus.PENDING,
                OrderCancellationRequest.RefundStatus.PROCESSING,
            ],
        ).first()
        if cancellation is None:
            logger.info(f"Refund notification {notification.gateway_order_id} has no pending refund to complete")
            return ReconcileResult(ReconcileResult.IGNORED, payment_id, order_id, 'no pending refund')

        self.cancellation_service.complete_refund(
            cancellation,
            transaction_id=notification.gateway_transaction_id or notification.gateway_order_id,
        )
        return ReconcileResult(ReconcileResult.PROCESSED, payment_id, order_id)

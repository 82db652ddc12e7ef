"""
Celery tasks for work that follows a payment or cancellation.

Tasks:
    - issue_digital_invitations: Create and activate invitations for a paid order
    - send_order_notification: Email the customer about an order event
    - expire_unpaid_orders: Periodic cleanup of orders that were never paid

Side-effect tasks retry up to twice with a fixed 60 second delay. A task that
still fails leaves an ActivityLog entry for manual follow-up.
"""
import logging
from datetime import timedelta

from celery import Task, shared_task
from django.conf import settings
from django.core.mail import send_mail
from django.utils import timezone

from core.exceptions import ServiceError
from .state import PAID_STATUSES, OrderStatus, PaymentStatus

logger = logging.getLogger(__name__)

NOTIFICATION_TEMPLATES = {
    'payment_confirmed': (
        'Payment received for order {order_number}',
        'Thank you! We received your payment for order {order_number}. '
        'Order total: {total_amount}.',
    ),
    'invitation_ready': (
        'Your digital invitation is ready',
        'The digital invitation(s) for order {order_number} are active: {invitations}.',
    ),
    'order_shipped': (
        'Order {order_number} has been shipped',
        'Your order {order_number} is on its way via {courier}.',
    ),
    'cancellation_requested': (
        'Cancellation request received for order {order_number}',
        'We received your request to cancel order {order_number}. '
        'Our team will review it shortly.',
    ),
    'cancellation_approved': (
        'Order {order_number} has been cancelled',
        'Your cancellation request for order {order_number} was approved. '
        'Any refund will be returned to your original payment method.',
    ),
    'cancellation_rejected': (
        'Cancellation request for order {order_number} was declined',
        'Your cancellation request for order {order_number} was declined. '
        'Notes from our team: {admin_notes}',
    ),
}


class SideEffectTask(Task):
    """Records an audit entry once a task has used up its retries."""

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        from .audit import log_activity
        from .models import Order

        order_id = args[0] if args else kwargs.get('order_id')
        logger.error(f"Task {self.name} failed for order {order_id} after retries: {exc}")
        order = Order.objects.filter(pk=order_id).first() if order_id else None
        if order is None:
            return
        log_activity(
            log_type='side_effect',
            action='failed',
            subject=order,
            description=f"{self.name} failed for order {order.order_number}",
            properties={
                'task': self.name,
                'task_id': task_id,
                'args': [str(a) for a in args],
                'error': str(exc),
            },
        )


side_effect_task = shared_task(
    base=SideEffectTask,
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    autoretry_for=(Exception,),
    retry_backoff=False,
)


@side_effect_task
def issue_digital_invitations(self, order_id: int):
    """
    Issue the digital invitations of a paid order, then tell the customer.

    Returns:
        Dict with the number of invitations issued
    """
    from .invitations import issue_invitations_for_order
    from .models import Order

    order = Order.objects.filter(pk=order_id).first()
    if order is None:
        logger.error(f"Order #{order_id} not found for invitation issuance")
        return {'status': 'error', 'message': f'Order {order_id} not found'}

    if OrderStatus(order.status) not in PAID_STATUSES - {OrderStatus.PARTIALLY_PAID}:
        logger.warning(f"Order {order.order_number} is not paid (status: {order.status}), skipping invitations")
        return {'status': 'skipped', 'message': f'Order {order_id} is not paid'}

    issued = issue_invitations_for_order(order)
    if issued:
        queue_notification(order.id, 'invitation_ready')

    return {'status': 'success', 'order_id': order.id, 'issued': len(issued)}


@side_effect_task
def send_order_notification(self, order_id: int, event: str):
    from .models import Order

    if event not in NOTIFICATION_TEMPLATES:
        logger.error(f"Unknown notification event '{event}' for order #{order_id}")
        return {'status': 'error', 'message': f'Unknown event {event}'}

    order = Order.objects.select_related('customer').filter(pk=order_id).first()
    if order is None:
        logger.error(f"Order #{order_id} not found for {event} notification")
        return {'status': 'error', 'message': f'Order {order_id} not found'}

    recipient = order.contact_email
    if not recipient:
        logger.warning(f"Order {order.order_number} has no contact email, {event} notification skipped")
        return {'status': 'skipped', 'message': 'No contact email'}

    latest_review = order.cancellation_requests.exclude(admin_notes='').first()
    context = {
        'order_number': order.order_number,
        'total_amount': f'{order.total_amount:,.0f}',
        'courier': order.courier or order.shipping_method or 'our courier',
        'invitations': ', '.join(order.digital_invitations.values_list('slug', flat=True)),
        'admin_notes': latest_review.admin_notes if latest_review else '-',
    }
    subject, body = NOTIFICATION_TEMPLATES[event]
    send_mail(
        subject.format(**context),
        body.format(**context),
        settings.DEFAULT_FROM_EMAIL,
        [recipient],
        fail_silently=False,
    )

    logger.info(f"[CELERY] {event} notification sent for order {order.order_number} to {recipient}")
    return {'status': 'success', 'order_id': order.id, 'event': event}


@shared_task
def expire_unpaid_orders():
    """
    Periodic task cancelling orders left unpaid past the configured TTL.

    Their stock goes back on sale. Orders with any paid payment are left alone.
    """
    from .cancellation import CancellationService
    from .config import OrderConfig
    from .models import Order

    config = OrderConfig.from_settings()
    threshold = timezone.now() - timedelta(hours=config.unpaid_order_ttl_hours)
    stale_orders = (
        Order.objects.filter(
            status__in=[OrderStatus.PENDING_PAYMENT, OrderStatus.FAILED],
            created_at__lt=threshold,
        )
        .exclude(payments__status=PaymentStatus.PAID)
        .distinct()
    )

    service = CancellationService(config)
    expired = 0
    for order in stale_orders:
        try:
            if service.cancel_unpaid_order(order, reason='payment window expired'):
                expired += 1
        except ServiceError as e:
            logger.warning(f"Could not expire order {order.order_number}: {e}")

    if expired:
        logger.warning(f"Expired {expired} unpaid order(s) older than {config.unpaid_order_ttl_hours}h")
    return {'expired': expired}


def _enqueue(task, *args):
    # Queue failures must never break the caller
    try:
        task.delay(*args)
        logger.info(f"Queued {task.name} with {args}")
    except Exception as e:
        logger.error(f"Failed to queue {task.name} with {args}: {e}")


def queue_notification(order_id: int, event: str):
    _enqueue(send_order_notification, order_id, event)


def dispatch_post_payment(order_id: int):
    """Run after a fully paid order commits: confirmation email and invitations."""
    queue_notification(order_id, 'payment_confirmed')
    _enqueue(issue_digital_invitations, order_id)

"""
Audit trail helpers. Every entry is an immutable ``ActivityLog`` row.
"""
import logging

from core.rate_limiting import get_client_ip
from .models import ActivityLog

logger = logging.getLogger(__name__)


def _user_role(user) -> str:
    if user is None:
        return 'system'
    return 'admin' if user.is_staff else 'customer'


def _user_name(user) -> str:
    if user is None:
        return 'System'
    return user.get_full_name() or user.get_username()


def log_activity(log_type, action, subject, user=None, description=None, properties=None, request=None):
    """
    Write an audit entry about ``subject`` (any saved model instance).

    ``request`` is optional; when given, the caller's IP and user agent are
    recorded as well.
    """
    subject_type = subject._meta.label
    if description is None:
        description = f"{_user_name(user)} {action} {log_type.replace('_', ' ')} {subject.__class__.__name__} #{subject.pk}"

    entry = ActivityLog.objects.create(
        log_type=log_type,
        action=action,
        user=user,
        user_name=_user_name(user) if user is not None else '',
        user_role=_user_role(user),
        subject_type=subject_type,
        subject_id=subject.pk,
        description=description,
        properties=properties or {},
        ip_address=get_client_ip(request) if request is not None else None,
        user_agent=request.META.get('HTTP_USER_AGENT', '') if request is not None else '',
    )
    logger.debug(f"Activity logged: {log_type}/{action} on {subject_type} #{subject.pk}")
    return entry


def get_activity_for(subject, limit=10):
    return ActivityLog.objects.filter(
        subject_type=subject._meta.label,
        subject_id=subject.pk,
    ).select_related('user')[:limit]


def log_cancellation_requested(cancellation, customer, request=None):
    order = cancellation.order
    return log_activity(
        log_type='order_cancellation',
        action='created',
        subject=cancellation,
        user=customer,
        description=f"Customer {_user_name(customer)} requested cancellation for order #{order.order_number}",
        properties={
            'order_id': order.id,
            'order_number': order.order_number,
            'cancellation_reason': cancellation.reason,
            'order_status': cancellation.order_status_before,
        },
        request=request,
    )


def log_cancellation_approved(cancellation, admin, request=None):
    order = cancellation.order
    return log_activity(
        log_type='order_cancellation',
        action='approved',
        subject=cancellation,
        user=admin,
        description=f"Admin {_user_name(admin)} approved cancellation request for order #{order.order_number}",
        properties={
            'order_id': order.id,
            'order_number': order.order_number,
            'admin_notes': cancellation.admin_notes,
            'refund_amount': str(cancellation.refund_amount) if cancellation.refund_amount is not None else None,
            'old_status': 'pending',
            'new_status': 'approved',
        },
        request=request,
    )


def log_cancellation_rejected(cancellation, admin, request=None):
    order = cancellation.order
    return log_activity(
        log_type='order_cancellation',
        action='rejected',
        subject=cancellation,
        user=admin,
        description=f"Admin {_user_name(admin)} rejected cancellation request for order #{order.order_number}",
        properties={
            'order_id': order.id,
            'order_number': order.order_number,
            'admin_notes': cancellation.admin_notes,
            'old_status': 'pending',
            'new_status': 'rejected',
        },
        request=request,
    )

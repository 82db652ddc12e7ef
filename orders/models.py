"""
Order Models - Order, OrderItem, Payment, OrderCancellationRequest,
DigitalInvitation and ActivityLog.

The status flow lives in ``orders.state``. Amounts on an Order are written once
at checkout; refunds are recorded on the cancellation request.
"""
import secrets
import string
from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import F, Q, Sum
from django.utils import timezone

from catalog.models import Product, ProductVariant
from core.money import as_amount
from promotions.models import PromoCode
from .state import (
    OrderPaymentStatus,
    OrderStatus,
    PaymentOption,
    PaymentStatus,
    PaymentType,
)

ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits


def generate_order_number(now=None) -> str:
    """``INV-YYYYMMDD-XXXXXXXX`` with a random upper-case alphanumeric suffix."""
    now = now or timezone.now()
    suffix = ''.join(secrets.choice(ORDER_NUMBER_ALPHABET) for _ in range(8))
    return f"INV-{now:%Y%m%d}-{suffix}"


class Order(models.Model):
    """
    Customer order for invitation products.

    ``customer`` is empty for guest checkouts, in which case ``guest_email``
    is where notifications go.
    """
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='orders',
    )
    guest_email = models.EmailField(blank=True, default='')
    order_number = models.CharField(max_length=32, unique=True)
    status = models.CharField(
        max_length=30,
        choices=OrderStatus.choices,
        default=OrderStatus.PENDING_PAYMENT,
        db_index=True,
    )
    payment_status = models.CharField(
        max_length=20,
        choices=OrderPaymentStatus.choices,
        default=OrderPaymentStatus.PENDING,
    )
    payment_option = models.CharField(
        max_length=10,
        choices=PaymentOption.choices,
        default=PaymentOption.FULL,
    )
    subtotal_amount = models.DecimalField(max_digits=12, decimal_places=2)
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    shipping_cost = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    shipping_method = models.CharField(max_length=50, blank=True, default='')
    courier = models.CharField(max_length=50, blank=True, default='')
    shipping_service = models.CharField(max_length=50, blank=True, default='')
    shipping_address = models.TextField(blank=True, default='')
    promo_code = models.ForeignKey(
        PromoCode,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='orders',
    )
    checkout_snapshot = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Order'
        verbose_name_plural = 'Orders'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['customer', 'status'], name='order_customer_status_idx'),
            models.Index(fields=['status', 'created_at'], name='order_status_created_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(total_amount=F('subtotal_amount') - F('discount_amount') + F('shipping_cost')),
                name='order_total_matches_components',
            ),
        ]

    def __str__(self):
        return f"{self.order_number} ({self.status})"

    @property
    def is_guest(self) -> bool:
        return self.customer_id is None

    @property
    def contact_email(self) -> str:
        if self.customer_id and self.customer.email:
            return self.customer.email
        return self.guest_email

    @property
    def amount_paid(self) -> Decimal:
        total = self.payments.filter(status=PaymentStatus.PAID).aggregate(total=Sum('amount'))['total']
        return as_amount(total)

    @property
    def remaining_balance(self) -> Decimal:
        return max(self.total_amount - self.amount_paid, Decimal('0.00'))

    @property
    def has_digital_items(self) -> bool:
        return self.items.filter(is_digital=True).exists()

    def is_owned_by(self, user) -> bool:
        return bool(user and user.is_authenticated and self.customer_id == user.pk)


class OrderItem(models.Model):
    """
    A product line in an order.

    Name, SKU and price are copied from the catalog at order time so the
    order keeps its historical values when the catalog changes.
    """
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='items')
    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,  # Products with orders cannot be deleted
        related_name='order_items',
    )
    variant = models.ForeignKey(
        ProductVariant,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='order_items',
    )
    product_name = models.CharField(max_length=200)
    variant_name = models.CharField(max_length=100, blank=True, default='')
    sku = models.CharField(max_length=64, blank=True, default='')
    is_digital = models.BooleanField(default=False)
    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    sub_total = models.DecimalField(max_digits=12, decimal_places=2)
    customization = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = 'Order Item'
        verbose_name_plural = 'Order Items'
        ordering = ['id']

    def __str__(self):
        return f"{self.quantity}x {self.product_name} @ {self.unit_price}"


class Payment(models.Model):
    """
    One payment slot of an order: ``full``, or ``dp`` followed by ``final``.

    ``transaction_id`` holds the gateway order id of the latest token request
    and changes when the payment is retried.
    """
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='payments')
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    payment_type = models.CharField(max_length=10, choices=PaymentType.choices)
    status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
        db_index=True,
    )
    transaction_id = models.CharField(max_length=64, blank=True, default='', db_index=True)
    gateway_transaction_id = models.CharField(max_length=100, blank=True, default='')
    gateway_payment_method = models.CharField(max_length=50, blank=True, default='')
    snap_token = models.CharField(max_length=255, blank=True, default='')
    redirect_url = models.URLField(max_length=500, blank=True, default='')
    raw_response = models.JSONField(default=dict, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Payment'
        verbose_name_plural = 'Payments'
        ordering = ['created_at', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['order', 'payment_type'],
                condition=Q(status__in=[PaymentStatus.PENDING, PaymentStatus.PAID]),
                name='one_open_payment_per_slot',
            ),
        ]

    def __str__(self):
        return f"Payment #{self.id} {self.payment_type} {self.amount} ({self.status})"

    @property
    def is_paid(self) -> bool:
        return self.status == PaymentStatus.PAID


class OrderCancellationRequest(models.Model):
    """
    Customer request to cancel an order, decided once by staff.

    Approval cancels the order and restores stock. Refund progress is tracked
    here; the order amounts are left untouched.
    """

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        APPROVED = 'approved', 'Approved'
        REJECTED = 'rejected', 'Rejected'

    class RefundStatus(models.TextChoices):
        PENDING = 'pending', 'Pending'
        PROCESSING = 'processing', 'Processing'
        COMPLETED = 'completed', 'Completed'
        FAILED = 'failed', 'Failed'

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='cancellation_requests')
    requested_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        related_name='cancellation_requests',
    )
    reason = models.TextField()
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING, db_index=True)
    order_status_before = models.CharField(max_length=30, choices=OrderStatus.choices)
    reviewed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )
    reviewed_at = models.DateTimeField(null=True, blank=True)
    admin_notes = models.TextField(blank=True, default='')
    refund_initiated = models.BooleanField(default=False)
    refund_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    refund_transaction_id = models.CharField(max_length=100, blank=True, default='')
    refund_status = models.CharField(
        max_length=20,
        choices=RefundStatus.choices,
        null=True,
        blank=True,
    )
    stock_restored = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Cancellation Request'
        verbose_name_plural = 'Cancellation Requests'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['order'],
                condition=Q(status='pending'),
                name='one_pending_cancellation_per_order',
            ),
        ]

    def __str__(self):
        return f"Cancellation of {self.order.order_number} ({self.status})"

    @property
    def is_pending(self) -> bool:
        return self.status == self.Status.PENDING

    def mark_reviewed(self, status, admin, notes=''):
        self.status = status
        self.reviewed_by = admin
        self.reviewed_at = timezone.now()
        self.admin_notes = notes or ''


class DigitalInvitation(models.Model):
    """Online invitation page issued for a paid digital order item."""

    class Status(models.TextChoices):
        DRAFT = 'draft', 'Draft'
        ACTIVE = 'active', 'Active'

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='digital_invitations')
    order_item = models.OneToOneField(OrderItem, on_delete=models.CASCADE, related_name='digital_invitation')
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='digital_invitations',
    )
    slug = models.SlugField(max_length=80, unique=True)
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.DRAFT)
    activated_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['id']

    def __str__(self):
        return f"Invitation {self.slug} ({self.status})"


class ActivityLog(models.Model):
    """
    Append-only audit entry. Existing rows cannot be saved again or deleted.
    """
    log_type = models.CharField(max_length=50, db_index=True)
    action = models.CharField(max_length=50)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )
    user_name = models.CharField(max_length=150, blank=True, default='')
    user_role = models.CharField(max_length=20, blank=True, default='')
    subject_type = models.CharField(max_length=100)
    subject_id = models.PositiveBigIntegerField(null=True, blank=True)
    description = models.TextField(blank=True, default='')
    properties = models.JSONField(default=dict, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        verbose_name = 'Activity Log'
        verbose_name_plural = 'Activity Logs'
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['subject_type', 'subject_id'], name='activity_subject_idx'),
        ]

    def __str__(self):
        return f"{self.log_type}/{self.action} on {self.subject_type} #{self.subject_id}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Activity log entries are immutable")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Activity log entries cannot be deleted")

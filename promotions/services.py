"""
Promo code validation.

Checks run in a fixed order and stop at the first failure:
    1. code exists and is active
    2. current time inside [valid_from, valid_until]
    3. subtotal reaches min_purchase_amount
    4. total_usage_limit not reached
    5. the customer's earlier orders with this code < usage_limit_per_user

Validation is read-only. Checkout validates with ``lock=True`` inside its
transaction and then calls ``redeem_promo_code`` so that concurrent checkouts
cannot push ``used_count`` past ``total_usage_limit``.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict

from django.db.models import F
from django.utils import timezone
from django.utils.translation import gettext as _

from core.exceptions import InvalidPromoCode
from core.money import ZERO, quantize_amount, to_decimal
from .models import PromoCode

logger = logging.getLogger(__name__)


@dataclass
class PromoValidation:
    promo_code: PromoCode
    discount: Decimal
    details: Dict = field(default_factory=dict)


def _count_user_orders(promo_code: PromoCode, user) -> int:
    # Local import: orders depends on promotions, not the other way round
    from orders.models import Order
    from orders.state import OrderStatus

    return (
        Order.objects.filter(promo_code=promo_code, customer=user)
        .exclude(status__in=[OrderStatus.CANCELLED, OrderStatus.FAILED])
        .count()
    )


def calculate_discount(promo_code: PromoCode, subtotal, quantum='1') -> Decimal:
    """Discount for ``subtotal``: fixed value, or capped percentage. Never above the subtotal."""
    subtotal = to_decimal(subtotal)
    if promo_code.discount_type == PromoCode.DiscountType.FIXED:
        discount = promo_code.discount_value
    else:
        discount = subtotal * promo_code.discount_value / Decimal('100')
        if promo_code.max_discount_amount is not None:
            discount = min(discount, promo_code.max_discount_amount)
    return quantize_amount(max(min(discount, subtotal), ZERO), quantum)


def validate_promo_code(code: str, user, subtotal, *, lock: bool = False,
                        now=None, quantum='1') -> PromoValidation:
    """
    Validate ``code`` for ``user`` and compute the discount on ``subtotal``.

    Args:
        lock: Take a row lock on the promo code (caller must be in a transaction).

    Raises:
        InvalidPromoCode: With a machine-readable ``reason`` and a localized message.
    """
    now = now or timezone.now()
    subtotal = to_decimal(subtotal)
    normalized = (code or '').strip().upper()

    if user is None or not user.is_authenticated:
        raise InvalidPromoCode('login_required', _('Please sign in to use a promo code.'))

    queryset = PromoCode.objects.select_for_update() if lock else PromoCode.objects.all()
    promo_code = queryset.filter(code=normalized).first()

    if promo_code is None:
        raise InvalidPromoCode('not_found', _('Promo code not found.'))
    if not promo_code.is_active:
        raise InvalidPromoCode('inactive', _('This promo code is not active.'))
    if now < promo_code.valid_from:
        raise InvalidPromoCode('not_started', _('This promo code is not valid yet.'))
    if now > promo_code.valid_until:
        raise InvalidPromoCode('expired', _('This promo code has expired.'))
    if promo_code.min_purchase_amount is not None and subtotal < promo_code.min_purchase_amount:
        raise InvalidPromoCode(
            'min_purchase',
            _('A minimum purchase of %(amount)s is required for this promo code.') % {
                'amount': f'{promo_code.min_purchase_amount:,.0f}',
            },
        )
    if promo_code.is_depleted:
        raise InvalidPromoCode('usage_limit_reached', _('This promo code has been fully used.'))
    if _count_user_orders(promo_code, user) >= promo_code.usage_limit_per_user:
        raise InvalidPromoCode('user_limit_reached', _('You have already used this promo code.'))

    discount = calculate_discount(promo_code, subtotal, quantum)
    if discount <= ZERO:
        raise InvalidPromoCode('not_applicable', _('This promo code cannot be applied to this order.'))

    return PromoValidation(
        promo_code=promo_code,
        discount=discount,
        details={
            'id': promo_code.id,
            'code': promo_code.code,
            'description': promo_code.description,
            'discount_type': promo_code.discount_type,
            'discount_value': str(promo_code.discount_value),
            'max_discount_amount': (
                str(promo_code.max_discount_amount) if promo_code.max_discount_amount is not None else None
            ),
        },
    )


def redeem_promo_code(promo_code: PromoCode) -> PromoCode:
    """Count one use of ``promo_code``. Call while holding the lock from ``validate_promo_code``."""
    PromoCode.objects.filter(pk=promo_code.pk).update(used_count=F('used_count') + 1)
    promo_code.refresh_from_db(fields=['used_count'])
    logger.info(f"Promo code {promo_code.code} redeemed, used {promo_code.used_count} time(s)")
    return promo_code


def get_active_promo_codes(now=None):
    now = now or timezone.now()
    return PromoCode.objects.filter(
        is_active=True,
        valid_from__lte=now,
        valid_until__gte=now,
    ).exclude(total_usage_limit__isnull=False, used_count__gte=F('total_usage_limit'))

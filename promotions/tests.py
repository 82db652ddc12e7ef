"""
Tests for promo code validation.

Test Cases:
1. Percentage discount is capped by max_discount_amount
2. Each rule rejects with its own reason code, in order
3. Validation never changes used_count
4. Per-user limit counts only live orders
5. Validate endpoint previews the discount
"""
from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import TestCase, override_settings
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from core.exceptions import InvalidPromoCode
from orders.models import Order, generate_order_number
from orders.state import OrderStatus
from promotions.models import PromoCode
from promotions.services import (
    calculate_discount,
    get_active_promo_codes,
    redeem_promo_code,
    validate_promo_code,
)

User = get_user_model()


def make_promo(**overrides):
    now = timezone.now()
    values = {
        'code': 'SAVE10',
        'discount_type': PromoCode.DiscountType.PERCENTAGE,
        'discount_value': Decimal('10'),
        'max_discount_amount': Decimal('50000'),
        'valid_from': now - timedelta(days=1),
        'valid_until': now + timedelta(days=30),
    }
    values.update(overrides)
    return PromoCode.objects.create(**values)


class PromoCodeValidationTestCase(TestCase):
    """Test cases for validate_promo_code."""

    def setUp(self):
        self.user = User.objects.create_user('rina', 'rina@example.com', 'secret')
        self.promo = make_promo()

    def assertRejected(self, reason, code='SAVE10', subtotal=Decimal('1000000'), user=None):
        with self.assertRaises(InvalidPromoCode) as context:
            validate_promo_code(code, user or self.user, subtotal)
        self.assertEqual(context.exception.reason, reason)
        self.assertEqual(context.exception.to_dict()['reason'], reason)
        return context.exception

    def test_percentage_discount_is_capped(self):
        """
        Given: SAVE10 is 10% capped at 50,000
        When: Validating against a 1,000,000 subtotal
        Then: Discount is min(100,000, 50,000) = 50,000
        """
        result = validate_promo_code('save10', self.user, Decimal('1000000'))

        self.assertEqual(result.discount, Decimal('50000.00'))
        self.assertEqual(result.promo_code, self.promo)
        self.assertEqual(result.details['code'], 'SAVE10')

    def test_percentage_below_cap(self):
        result = validate_promo_code('SAVE10', self.user, Decimal('300000'))
        self.assertEqual(result.discount, Decimal('30000.00'))

    def test_fixed_discount_never_exceeds_subtotal(self):
        promo = make_promo(
            code='WEDDING50K',
            discount_type=PromoCode.DiscountType.FIXED,
            discount_value=Decimal('50000'),
            max_discount_amount=None,
        )
        self.assertEqual(calculate_discount(promo, Decimal('30000')), Decimal('30000.00'))
        self.assertEqual(calculate_discount(promo, Decimal('80000')), Decimal('50000.00'))

    def test_discount_rounds_to_whole_currency_units(self):
        promo = make_promo(code='ODD', discount_value=Decimal('7.5'), max_discount_amount=None)
        # 7.5% of 12,345 = 925.875
        self.assertEqual(calculate_discount(promo, Decimal('12345')), Decimal('926.00'))

    def test_requires_signed_in_user(self):
        with self.assertRaises(InvalidPromoCode) as context:
            validate_promo_code('SAVE10', None, Decimal('1000000'))
        self.assertEqual(context.exception.reason, 'login_required')

    def test_unknown_code(self):
        self.assertRejected('not_found', code='NOPE')

    def test_inactive_code(self):
        self.promo.is_active = False
        self.promo.save()
        self.assertRejected('inactive')

    def test_not_started_and_expired(self):
        now = timezone.now()
        self.promo.valid_from = now + timedelta(days=1)
        self.promo.save()
        self.assertRejected('not_started')

        self.promo.valid_from = now - timedelta(days=10)
        self.promo.valid_until = now - timedelta(days=1)
        self.promo.save()
        self.assertRejected('expired')

    def test_minimum_purchase(self):
        self.promo.min_purchase_amount = Decimal('500000')
        self.promo.save()

        error = self.assertRejected('min_purchase', subtotal=Decimal('499999'))
        self.assertEqual(error.status_code, 422)
        validate_promo_code('SAVE10', self.user, Decimal('500000'))

    def test_total_usage_limit(self):
        self.promo.total_usage_limit = 3
        self.promo.used_count = 3
        self.promo.save()
        self.assertRejected('usage_limit_reached')

    def test_rules_checked_in_order(self):
        # Expired and depleted at once: the validity window is reported first
        self.promo.valid_until = timezone.now() - timedelta(minutes=1)
        self.promo.total_usage_limit = 1
        self.promo.used_count = 1
        self.promo.save()
        self.assertRejected('expired')

    def test_validation_does_not_count_a_use(self):
        validate_promo_code('SAVE10', self.user, Decimal('1000000'))
        validate_promo_code('SAVE10', self.user, Decimal('1000000'))

        self.promo.refresh_from_db()
        self.assertEqual(self.promo.used_count, 0)

    def test_redeem_increments_used_count(self):
        redeem_promo_code(self.promo)
        redeem_promo_code(self.promo)
        self.assertEqual(self.promo.used_count, 2)

    def test_active_codes_exclude_depleted_and_expired(self):
        make_promo(code='OLD', valid_until=timezone.now() - timedelta(days=1))
        make_promo(code='GONE', total_usage_limit=1, used_count=1)

        codes = set(get_active_promo_codes().values_list('code', flat=True))
        self.assertEqual(codes, {'SAVE10'})


class PromoCodeUserLimitTestCase(TestCase):
    """Per-user limits depend on the customer's orders."""

    def setUp(self):
        self.user = User.objects.create_user('dewi', 'dewi@example.com', 'secret')
        self.promo = make_promo()

    def make_order(self, status):
        return Order.objects.create(
            customer=self.user,
            order_number=generate_order_number(),
            status=status,
            subtotal_amount=Decimal('100000'),
            discount_amount=Decimal('10000'),
            shipping_cost=Decimal('0'),
            total_amount=Decimal('90000'),
            promo_code=self.promo,
        )

    def test_user_limit_reached(self):
        self.make_order(OrderStatus.PAID)

        with self.assertRaises(InvalidPromoCode) as context:
            validate_promo_code('SAVE10', self.user, Decimal('100000'))
        self.assertEqual(context.exception.reason, 'user_limit_reached')

    def test_cancelled_and_failed_orders_do_not_count(self):
        self.make_order(OrderStatus.CANCELLED)
        self.make_order(OrderStatus.FAILED)

        result = validate_promo_code('SAVE10', self.user, Decimal('100000'))
        self.assertEqual(result.discount, Decimal('10000.00'))


@override_settings(RATE_LIMIT_ENABLED=False)
class PromoCodeAPITestCase(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user('sari', 'sari@example.com', 'secret')
        make_promo()

    def test_validate_endpoint_returns_discount(self):
        self.client.force_authenticate(self.user)
        response = self.client.post(
            reverse('promotions:promo-code-validate'),
            {'code': 'SAVE10', 'subtotal': '1000000'},
            format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['valid'])
        self.assertEqual(response.data['discount'], '50000.00')

    def test_validate_endpoint_reports_reason(self):
        self.client.force_authenticate(self.user)
        response = self.client.post(
            reverse('promotions:promo-code-validate'),
            {'code': 'UNKNOWN', 'subtotal': '1000000'},
            format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_422_UNPROCESSABLE_ENTITY)
        self.assertEqual(response.data['code'], 'invalid_promo_code')
        self.assertEqual(response.data['reason'], 'not_found')

    def test_validate_endpoint_requires_login(self):
        response = self.client.post(
            reverse('promotions:promo-code-validate'),
            {'code': 'SAVE10', 'subtotal': '1000000'},
            format='json',
        )
        self.assertIn(response.status_code, (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN))

    def test_list_is_public(self):
        response = self.client.get(reverse('promotions:promo-code-list'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([p['code'] for p in response.data['results']], ['SAVE10'])

"""
Tests for the order API endpoints.

Test Cases:
1. Checkout returns the order with its payment token, or a clear error
2. Customers only see and act on their own orders
3. The payment notification endpoint answers with the statuses the gateway expects
4. Cancellation endpoints for customers and staff
5. Admin fulfilment updates
6. Write endpoints are rate limited per caller
"""
from unittest.mock import MagicMock, patch

from django.contrib.auth import get_user_model
from django.test import TestCase, override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from core.exceptions import GatewayError
from orders.cancellation import CancellationService
from orders.models import Order, OrderCancellationRequest, Payment
from orders.state import OrderStatus, PaymentStatus
from .helpers import TEST_GATEWAY_SETTINGS, make_gateway, make_promo, make_variant, notify

User = get_user_model()


@override_settings(PAYMENT_GATEWAY=TEST_GATEWAY_SETTINGS, RATE_LIMIT_ENABLED=False)
class OrderAPITestBase(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.customer = User.objects.create_user('nadia', 'nadia@example.com', 'secret')
        self.stranger = User.objects.create_user('joko', 'joko@example.com', 'secret')
        self.admin = User.objects.create_user('admin', 'admin@example.com', 'secret', is_staff=True)
        self.card = make_variant('CLS-HC-A5', price='10000', stock=500)
        self.gateway = make_gateway()

    def checkout_payload(self, quantity=100, **extra):
        payload = {
            'items': [{'variant_id': self.card.id, 'quantity': quantity, 'customization': {'paper': 'ivory'}}],
            'shipping': {'method': 'courier', 'cost': '0', 'courier': 'jne', 'service': 'REG',
                         'address': 'Jl. Melati 1, Bandung'},
            'payment_option': 'full',
        }
        payload.update(extra)
        return payload

    def place_order(self, user=None, **extra):
        self.client.force_authenticate(user or self.customer)
        response = self.client.post(reverse('orders:checkout'), self.checkout_payload(**extra), format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        self.client.force_authenticate(None)
        return Order.objects.get(pk=response.data['order']['id'])

    def pay(self, order, payment_type='full'):
        payment = order.payments.get(payment_type=payment_type)
        notify(self.gateway, payment, 'settlement')
        order.refresh_from_db()
        return order


class CheckoutAPITestCase(OrderAPITestBase):

    def test_checkout_returns_order_and_token(self):
        """
        Given: A signed-in customer
        When: POST /api/checkout/ with 100 cards on dp_50
        Then: 201 with the order, its 500,000 down payment and a payment token
        """
        self.client.force_authenticate(self.customer)
        response = self.client.post(
            reverse('orders:checkout'), self.checkout_payload(payment_option='dp_50'), format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        order = response.data['order']
        self.assertEqual(order['status'], 'Pending Payment')
        self.assertEqual(order['total_amount'], '1000000.00')
        self.assertEqual(order['remaining_balance'], '1000000.00')
        self.assertEqual(len(order['items']), 1)
        self.assertEqual(order['items'][0]['customization']['paper'], 'ivory')
        self.assertEqual(order['payments'][0]['payment_type'], 'dp')
        self.assertEqual(order['payments'][0]['amount'], '500000.00')
        self.assertTrue(response.data['snap_token'])
        self.assertTrue(response.data['redirect_url'].startswith('https://dummy-gateway.local/pay/'))

    def test_guest_checkout(self):
        response = self.client.post(
            reverse('orders:checkout'), self.checkout_payload(guest_email='guest@example.com'), format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(Order.objects.get().guest_email, 'guest@example.com')

    def test_guest_without_email(self):
        response = self.client.post(reverse('orders:checkout'), self.checkout_payload(), format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'validation_error')

    def test_empty_cart(self):
        self.client.force_authenticate(self.customer)
        response = self.client.post(reverse('orders:checkout'), self.checkout_payload(items=[]), format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('items', response.data)

    def test_out_of_stock(self):
        self.client.force_authenticate(self.customer)
        response = self.client.post(reverse('orders:checkout'), self.checkout_payload(quantity=501), format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'out_of_stock')
        self.assertEqual(response.data['available'], 500)
        self.assertFalse(Order.objects.exists())

    def test_invalid_promo_code(self):
        self.client.force_authenticate(self.customer)
        response = self.client.post(
            reverse('orders:checkout'), self.checkout_payload(promo_code='NOPE'), format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_422_UNPROCESSABLE_ENTITY)
        self.assertEqual(response.data['reason'], 'not_found')

    def test_promo_code_discount(self):
        make_promo()
        self.client.force_authenticate(self.customer)
        response = self.client.post(
            reverse('orders:checkout'), self.checkout_payload(promo_code='SAVE10'), format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['order']['discount_amount'], '50000.00')
        self.assertEqual(response.data['order']['promo_code'], 'SAVE10')

    def test_gateway_failure(self):
        """
        Given: The gateway cannot issue a token
        When: Checking out
        Then: 500 with the order number so the customer can retry the payment
        """
        self.client.force_authenticate(self.customer)
        with patch('orders.gateways.DummyGateway.create_transaction_token', side_effect=GatewayError()):
            response = self.client.post(reverse('orders:checkout'), self.checkout_payload(), format='json')

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data['code'], 'payment_initiation_failed')
        order = Order.objects.get()
        self.assertEqual(response.data['order_number'], order.order_number)
        self.assertEqual(order.status, OrderStatus.PENDING_PAYMENT)

    def test_unexpected_error_is_not_leaked(self):
        self.client.force_authenticate(self.customer)
        with patch('orders.checkout.CheckoutService.checkout', side_effect=RuntimeError('db password wrong')):
            response = self.client.post(reverse('orders:checkout'), self.checkout_payload(), format='json')

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data['code'], 'server_error')
        self.assertNotIn('password', response.data['message'])


class OrderAccessAPITestCase(OrderAPITestBase):

    def test_list_own_orders(self):
        order = self.place_order()
        self.place_order(user=self.stranger, quantity=1)

        self.client.force_authenticate(self.customer)
        response = self.client.get(reverse('orders:order-list'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([o['id'] for o in response.data['results']], [order.id])
        self.assertEqual(response.data['results'][0]['item_count'], 1)

    def test_detail_of_other_customer_is_hidden(self):
        order = self.place_order()

        self.client.force_authenticate(self.stranger)
        self.assertEqual(
            self.client.get(reverse('orders:order-detail', args=[order.id])).status_code,
            status.HTTP_404_NOT_FOUND,
        )
        self.client.force_authenticate(self.admin)
        self.assertEqual(
            self.client.get(reverse('orders:order-detail', args=[order.id])).status_code,
            status.HTTP_200_OK,
        )

    def test_list_requires_login(self):
        response = self.client.get(reverse('orders:order-list'))
        self.assertIn(response.status_code, (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN))

    def test_retry_payment(self):
        order = self.place_order()
        notify(self.gateway, order.payments.get(), 'expire')

        self.client.force_authenticate(self.customer)
        response = self.client.post(reverse('orders:order-retry-payment', args=[order.id]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['order_number'], order.order_number)
        self.assertTrue(response.data['snap_token'])
        self.assertEqual(response.data['payment']['status'], PaymentStatus.PENDING)

    def test_retry_payment_by_stranger(self):
        order = self.place_order()

        self.client.force_authenticate(self.stranger)
        response = self.client.post(reverse('orders:order-retry-payment', args=[order.id]))

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_retry_payment_gateway_down(self):
        order = self.place_order()

        self.client.force_authenticate(self.customer)
        with patch('orders.gateways.DummyGateway.create_transaction_token', side_effect=GatewayError()):
            response = self.client.post(reverse('orders:order-retry-payment', args=[order.id]))

        self.assertEqual(response.status_code, status.HTTP_502_BAD_GATEWAY)
        self.assertEqual(response.data['order_number'], order.order_number)

    def test_pay_final(self):
        order = self.pay(self.place_order(payment_option='dp_30'), payment_type='dp')

        self.client.force_authenticate(self.customer)
        response = self.client.post(reverse('orders:order-pay-final', args=[order.id]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['payment']['payment_type'], 'final')
        self.assertEqual(response.data['payment']['amount'], '700000.00')

    def test_pay_final_before_down_payment(self):
        order = self.place_order(payment_option='dp_30')

        self.client.force_authenticate(self.customer)
        response = self.client.post(reverse('orders:order-pay-final', args=[order.id]))

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class PaymentWebhookAPITestCase(OrderAPITestBase):

    def post_notification(self, payload):
        return self.client.post(reverse('orders:midtrans-webhook'), payload, format='json')

    def test_settlement(self):
        order = self.place_order()
        payment = order.payments.get()
        payload = self.gateway.build_notification(payment.transaction_id, 'settlement', payment.amount)

        response = self.post_notification(payload)
        replay = self.post_notification(payload)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, {'status': 'ok'})
        self.assertEqual(replay.status_code, status.HTTP_200_OK)
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.PAID)

    def test_invalid_signature(self):
        order = self.place_order()
        payment = order.payments.get()
        payload = self.gateway.build_notification(payment.transaction_id, 'settlement', payment.amount)
        payload['signature_key'] = '0' * 128

        response = self.post_notification(payload)

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data, {'error': 'Invalid signature'})
        self.assertEqual(Payment.objects.get(pk=payment.pk).status, PaymentStatus.PENDING)

    def test_unknown_payment(self):
        response = self.post_notification(self.gateway.build_notification('424242-ABCD', 'settlement', '1000'))

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_malformed_notification(self):
        payload = self.gateway.build_notification('1-ABCD', 'settlement', '1000')
        del payload['status_code']

        response = self.post_notification(payload)

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_form_encoded_notification(self):
        order = self.place_order()
        payment = order.payments.get()
        payload = self.gateway.build_notification(payment.transaction_id, 'expire', payment.amount)

        response = self.client.post(reverse('orders:midtrans-webhook'), payload)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(Payment.objects.get(pk=payment.pk).status, PaymentStatus.FAILED)


class CancellationAPITestCase(OrderAPITestBase):

    def test_eligibility(self):
        order = self.place_order()

        self.client.force_authenticate(self.customer)
        response = self.client.get(reverse('orders:order-cancel', args=[order.id]))

        self.assertEqual(response.data, {'can_cancel': True, 'reason': None})

    def test_request_cancellation(self):
        order = self.pay(self.place_order())

        self.client.force_authenticate(self.customer)
        response = self.client.post(
            reverse('orders:order-cancel', args=[order.id]),
            {'reason': 'The venue cancelled our booking'},
            format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['status'], 'pending')
        self.assertEqual(response.data['order_number'], order.order_number)
        self.assertEqual(response.data['refund_amount'], '1000000.00')

        second = self.client.post(
            reverse('orders:order-cancel', args=[order.id]),
            {'reason': 'The venue cancelled our booking'},
            format='json',
        )
        self.assertEqual(second.status_code, status.HTTP_422_UNPROCESSABLE_ENTITY)
        self.assertEqual(second.data['code'], 'cancellation_not_allowed')

    def test_short_reason(self):
        order = self.place_order()

        self.client.force_authenticate(self.customer)
        response = self.client.post(reverse('orders:order-cancel', args=[order.id]), {'reason': 'no'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_other_customers_order(self):
        order = self.place_order()

        self.client.force_authenticate(self.stranger)
        response = self.client.post(
            reverse('orders:order-cancel', args=[order.id]),
            {'reason': 'Trying to cancel somebody else'},
            format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def make_request(self, paid=True):
        order = self.place_order()
        if paid:
            order = self.pay(order)
        return CancellationService().create_cancellation_request(order, self.customer, 'Our families disagree')

    def test_admin_approves(self):
        cancellation = self.make_request()

        self.client.force_authenticate(self.admin)
        response = self.client.post(
            reverse('orders:admin-cancellation-approve', args=[cancellation.id]),
            {'notes': 'Refund via bank transfer', 'refund_amount': '900000'},
            format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'approved')
        self.assertEqual(response.data['refund_amount'], '900000.00')
        self.assertEqual(Order.objects.get(pk=cancellation.order_id).status, OrderStatus.CANCELLED)

        again = self.client.post(
            reverse('orders:admin-cancellation-approve', args=[cancellation.id]), {}, format='json',
        )
        self.assertEqual(again.status_code, status.HTTP_409_CONFLICT)

    def test_customer_cannot_approve(self):
        cancellation = self.make_request()

        self.client.force_authenticate(self.customer)
        response = self.client.post(
            reverse('orders:admin-cancellation-approve', args=[cancellation.id]), {}, format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_admin_rejects_with_notes(self):
        cancellation = self.make_request(paid=False)

        self.client.force_authenticate(self.admin)
        missing = self.client.post(
            reverse('orders:admin-cancellation-reject', args=[cancellation.id]), {}, format='json',
        )
        response = self.client.post(
            reverse('orders:admin-cancellation-reject', args=[cancellation.id]),
            {'notes': 'Design already approved by you'},
            format='json',
        )

        self.assertEqual(missing.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'rejected')

    def test_admin_completes_refund(self):
        cancellation = self.make_request()
        CancellationService().approve(cancellation, self.admin)

        self.client.force_authenticate(self.admin)
        response = self.client.post(
            reverse('orders:admin-cancellation-refund-complete', args=[cancellation.id]),
            {'refund_transaction_id': 'RF-9001'},
            format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['refund_status'], 'completed')
        self.assertEqual(Order.objects.get(pk=cancellation.order_id).status, OrderStatus.REFUNDED)

    def test_admin_lists_pending_requests(self):
        pending = self.make_request(paid=False)
        rejected_order = self.place_order(quantity=5)
        rejected = CancellationService().create_cancellation_request(
            rejected_order, self.customer, 'Ordered the wrong design',
        )
        CancellationService().reject(rejected, self.admin, 'Already printed')

        self.client.force_authenticate(self.admin)
        response = self.client.get(reverse('orders:admin-cancellation-list'), {'status': 'pending'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([r['id'] for r in response.data['results']], [pending.id])
        self.assertEqual(OrderCancellationRequest.objects.count(), 2)


class AdminOrderStatusAPITestCase(OrderAPITestBase):

    def test_advance_fulfilment(self):
        order = self.pay(self.place_order())

        self.client.force_authenticate(self.admin)
        response = self.client.post(
            reverse('orders:admin-order-status', args=[order.id]),
            {'status': 'Processing', 'reason': 'artwork received'},
            format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'Processing')
        self.assertEqual(response.data['amount_paid'], '1000000.00')

    def test_skipping_steps_is_refused(self):
        order = self.pay(self.place_order())

        self.client.force_authenticate(self.admin)
        response = self.client.post(
            reverse('orders:admin-order-status', args=[order.id]), {'status': 'Shipped'}, format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_422_UNPROCESSABLE_ENTITY)
        self.assertEqual(response.data['code'], 'invalid_state_transition')

    def test_payment_statuses_cannot_be_set(self):
        order = self.place_order()

        self.client.force_authenticate(self.admin)
        response = self.client.post(
            reverse('orders:admin-order-status', args=[order.id]), {'status': 'Paid'}, format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_422_UNPROCESSABLE_ENTITY)
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.PENDING_PAYMENT)

    def test_shipping_notifies_customer(self):
        order = self.pay(self.place_order())
        self.client.force_authenticate(self.admin)
        for step in ('Processing', 'In Production'):
            self.client.post(reverse('orders:admin-order-status', args=[order.id]), {'status': step}, format='json')

        with patch('orders.tasks.send_order_notification.delay') as delay:
            with self.captureOnCommitCallbacks(execute=True):
                response = self.client.post(
                    reverse('orders:admin-order-status', args=[order.id]), {'status': 'Shipped'}, format='json',
                )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        delay.assert_called_once_with(order.id, 'order_shipped')

    def test_customers_cannot_update_status(self):
        order = self.pay(self.place_order())

        self.client.force_authenticate(self.customer)
        response = self.client.post(
            reverse('orders:admin-order-status', args=[order.id]), {'status': 'Processing'}, format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


@override_settings(PAYMENT_GATEWAY=TEST_GATEWAY_SETTINGS, RATE_LIMIT_ENABLED=True)
class RateLimitTestCase(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.customer = User.objects.create_user('lina', 'lina@example.com', 'secret')
        self.card = make_variant('CLS-HC-A5', price='10000', stock=500)
        self.redis = MagicMock()
        self.redis.ttl.return_value = 42
        patcher = patch('core.rate_limiting.get_redis_client', return_value=self.redis)
        patcher.start()
        self.addCleanup(patcher.stop)

    def checkout(self):
        self.client.force_authenticate(self.customer)
        return self.client.post(
            reverse('orders:checkout'),
            {'items': [{'variant_id': self.card.id, 'quantity': 1}]},
            format='json',
        )

    def test_within_limit(self):
        self.redis.incr.return_value = 1

        response = self.checkout()

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response['X-RateLimit-Remaining'], '9')
        self.redis.incr.assert_called_once_with(f'rate_limit:checkout:user:{self.customer.pk}')
        self.redis.expire.assert_called_once()

    def test_over_limit(self):
        """
        Given: The caller already made 10 checkouts this minute
        When: Making an 11th
        Then: 429 with Retry-After and no order created
        """
        self.redis.incr.return_value = 11

        response = self.checkout()

        self.assertEqual(response.status_code, status.HTTP_429_TOO_MANY_REQUESTS)
        self.assertEqual(response.data['code'], 'rate_limited')
        self.assertEqual(response['Retry-After'], '42')
        self.assertFalse(Order.objects.exists())

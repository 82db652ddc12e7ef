"""
Tests for the Midtrans Snap adapter.

Test Cases:
1. Token requests carry the payment amount under a fresh gateway order id
2. Transport failures are retried; HTTP errors are not
3. Missing configuration or malformed answers raise GatewayError
"""
from unittest.mock import MagicMock, patch

import requests
from django.contrib.auth import get_user_model
from django.test import TestCase, override_settings

from core.exceptions import GatewayError
from orders.gateways import (
    SNAP_PRODUCTION_URL,
    SNAP_SANDBOX_URL,
    DummyGateway,
    GatewayConfig,
    MidtransGateway,
    get_gateway,
)
from .helpers import TEST_GATEWAY_SETTINGS, make_variant, place_order

User = get_user_model()


def snap_response(payload, status_code=201):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f'{status_code} error')
    return response


class MidtransGatewayTestCase(TestCase):

    def setUp(self):
        customer = User.objects.create_user('maya', 'maya@example.com', 'secret', first_name='Maya')
        variant = make_variant('CLS-HC-A5', price='10000', stock=500)
        result = place_order(customer, [(variant, 100)], payment_option='dp_50')
        self.order = result.order
        self.payment = result.payment
        self.gateway = MidtransGateway(GatewayConfig(
            server_key='SB-Mid-server-abc',
            notification_url='https://shop.example.com/api/webhooks/midtrans/',
            max_attempts=2,
        ))

    @patch('orders.gateways.requests.post')
    def test_token_request(self, post):
        post.return_value = snap_response({'token': 'snap-123', 'redirect_url': 'https://app.sandbox.midtrans.com/x'})

        token = self.gateway.create_transaction_token(self.order, self.payment)

        self.assertEqual(token.token, 'snap-123')
        self.assertTrue(token.gateway_order_id.startswith(f'{self.payment.id}-'))

        args, kwargs = post.call_args
        self.assertEqual(args[0], SNAP_SANDBOX_URL)
        self.assertEqual(kwargs['auth'], ('SB-Mid-server-abc', ''))
        self.assertEqual(
            kwargs['headers']['X-Override-Notification'],
            'https://shop.example.com/api/webhooks/midtrans/',
        )
        params = kwargs['json']
        self.assertEqual(params['transaction_details']['order_id'], token.gateway_order_id)
        self.assertEqual(params['transaction_details']['gross_amount'], 500000)
        self.assertEqual(params['item_details'][0]['price'], 500000)
        self.assertEqual(params['item_details'][0]['id'], f'DP-{self.order.order_number}')
        self.assertEqual(params['customer_details']['email'], 'maya@example.com')

    @patch('orders.gateways.requests.post')
    def test_every_request_gets_a_new_order_id(self, post):
        post.return_value = snap_response({'token': 'snap-123', 'redirect_url': ''})

        first = self.gateway.create_transaction_token(self.order, self.payment)
        second = self.gateway.create_transaction_token(self.order, self.payment)

        self.assertNotEqual(first.gateway_order_id, second.gateway_order_id)

    def test_production_url(self):
        gateway = MidtransGateway(GatewayConfig(server_key='x', is_production=True))
        self.assertEqual(gateway.api_url, SNAP_PRODUCTION_URL)

    @patch('orders.gateways.requests.post')
    def test_connection_errors_are_retried(self, post):
        post.side_effect = [
            requests.ConnectionError('reset'),
            snap_response({'token': 'snap-456', 'redirect_url': ''}),
        ]

        token = self.gateway.create_transaction_token(self.order, self.payment)

        self.assertEqual(token.token, 'snap-456')
        self.assertEqual(post.call_count, 2)

    @patch('orders.gateways.requests.post')
    def test_gives_up_after_max_attempts(self, post):
        post.side_effect = requests.Timeout('slow')

        with self.assertRaises(GatewayError):
            self.gateway.create_transaction_token(self.order, self.payment)
        self.assertEqual(post.call_count, 2)

    @patch('orders.gateways.requests.post')
    def test_http_errors_are_not_retried(self, post):
        post.return_value = snap_response({'error_messages': ['bad request']}, status_code=400)

        with self.assertRaises(GatewayError):
            self.gateway.create_transaction_token(self.order, self.payment)
        self.assertEqual(post.call_count, 1)

    @patch('orders.gateways.requests.post')
    def test_answer_without_token(self, post):
        post.return_value = snap_response({'redirect_url': 'https://x'})

        with self.assertRaises(GatewayError):
            self.gateway.create_transaction_token(self.order, self.payment)

    @patch('orders.gateways.requests.post')
    def test_missing_server_key(self, post):
        gateway = MidtransGateway(GatewayConfig(server_key=''))

        with self.assertRaises(GatewayError):
            gateway.create_transaction_token(self.order, self.payment)
        post.assert_not_called()


class GatewaySelectionTestCase(TestCase):

    @override_settings(PAYMENT_GATEWAY=TEST_GATEWAY_SETTINGS)
    def test_backend_from_settings(self):
        gateway = get_gateway()

        self.assertIsInstance(gateway, DummyGateway)
        self.assertEqual(gateway.config.server_key, TEST_GATEWAY_SETTINGS['SERVER_KEY'])
        self.assertEqual(gateway.config.max_attempts, 1)

    @override_settings(PAYMENT_GATEWAY={'SERVER_KEY': 'k'})
    def test_midtrans_is_the_default(self):
        self.assertIsInstance(get_gateway(), MidtransGateway)

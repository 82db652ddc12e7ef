"""
Payment gateway adapters.

Everything gateway-specific lives here: the Snap API call, the notification
signature scheme, the mapping of gateway transaction statuses to payment
outcomes, and how our payment id is carried inside the gateway order id.
"""
import enum
import hashlib
import hmac
import logging
import secrets
import string
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional

import requests
from django.conf import settings
from django.utils.module_loading import import_string
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.exceptions import GatewayError, InvalidSignature

logger = logging.getLogger(__name__)

SNAP_SANDBOX_URL = 'https://app.sandbox.midtrans.com/snap/v1/transactions'
SNAP_PRODUCTION_URL = 'https://app.midtrans.com/snap/v1/transactions'

SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def http_retry(max_attempts):
    """Retry transport failures only; an HTTP error answer is final."""
    return retry(
        reraise=True,
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=0.3, min=0.3, max=3),
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
    )


def compute_signature(order_id, status_code, gross_amount, server_key) -> str:
    raw = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(raw.encode('utf-8')).hexdigest()


@dataclass(frozen=True)
class GatewayConfig:
    server_key: str = ''
    client_key: str = ''
    is_production: bool = False
    timeout: float = 10
    notification_url: str = ''
    max_attempts: int = 3

    @classmethod
    def from_settings(cls):
        raw = getattr(settings, 'PAYMENT_GATEWAY', {})
        return cls(
            server_key=raw.get('SERVER_KEY', ''),
            client_key=raw.get('CLIENT_KEY', ''),
            is_production=bool(raw.get('IS_PRODUCTION', False)),
            timeout=float(raw.get('TIMEOUT', 10)),
            notification_url=raw.get('NOTIFICATION_URL', ''),
            max_attempts=int(raw.get('MAX_ATTEMPTS', 3)),
        )


@dataclass(frozen=True)
class GatewayToken:
    token: str
    redirect_url: str
    gateway_order_id: str


class Outcome(enum.Enum):
    SUCCESS = 'success'
    FAILURE = 'failure'
    REFUND = 'refund'
    PENDING = 'pending'
    UNKNOWN = 'unknown'


@dataclass(frozen=True)
class GatewayNotification:
    gateway_order_id: str
    transaction_status: str
    fraud_status: str
    payment_method: str
    gross_amount: Decimal
    gateway_transaction_id: str
    outcome: Outcome
    raw: Dict = field(default_factory=dict)


def map_outcome(transaction_status: str, fraud_status: str = '') -> Outcome:
    if transaction_status == 'capture':
        if fraud_status == 'accept':
            return Outcome.SUCCESS
        if fraud_status == 'challenge':
            return Outcome.PENDING
        return Outcome.UNKNOWN
    if transaction_status == 'settlement':
        return Outcome.SUCCESS
    if transaction_status in ('cancel', 'deny', 'expire', 'failure'):
        return Outcome.FAILURE
    if transaction_status in ('refund', 'partial_refund'):
        return Outcome.REFUND
    if transaction_status == 'pending':
        return Outcome.PENDING
    return Outcome.UNKNOWN


class PaymentGateway(ABC):
    """
    Base class for payment providers.

    Subclasses request payment tokens; notification parsing and signature
    checking are shared since every supported provider signs the same way.
    """

    def __init__(self, config: GatewayConfig):
        self.config = config

    @abstractmethod
    def create_transaction_token(self, order, payment) -> GatewayToken:
        """Request a payment token for ``payment``. Raises ``GatewayError``."""

    def new_gateway_order_id(self, payment) -> str:
        # Providers refuse to reuse an order id, so every attempt gets a fresh suffix
        suffix = ''.join(secrets.choice(SUFFIX_ALPHABET) for _ in range(4))
        return f"{payment.id}-{suffix}"

    @staticmethod
    def extract_payment_id(gateway_order_id) -> Optional[int]:
        head = str(gateway_order_id or '').split('-', 1)[0]
        return int(head) if head.isdigit() else None

    def sign(self, order_id, status_code, gross_amount) -> str:
        return compute_signature(order_id, status_code, gross_amount, self.config.server_key)

    def parse_notification(self, payload) -> GatewayNotification:
        """
        Verify and decode a payment notification.

        Raises:
            InvalidSignature: Signature is missing or does not match.
            GatewayError: Required fields are missing or malformed.
        """
        if not isinstance(payload, dict):
            raise GatewayError('Notification payload must be an object')

        signature = payload.get('signature_key')
        if not signature:
            raise InvalidSignature()

        missing = [key for key in ('order_id', 'status_code', 'gross_amount', 'transaction_status')
                   if not payload.get(key)]
        if missing:
            raise GatewayError(f"Notification is missing fields: {', '.join(missing)}")

        order_id = str(payload['order_id'])
        expected = self.sign(order_id, payload['status_code'], payload['gross_amount'])
        if not hmac.compare_digest(expected, str(signature)):
            logger.warning(f"Invalid notification signature for gateway order {order_id}")
            raise InvalidSignature()

        try:
            gross_amount = Decimal(str(payload['gross_amount']))
        except InvalidOperation:
            raise GatewayError(f"Invalid gross_amount in notification for {order_id}")

        transaction_status = str(payload['transaction_status'])
        fraud_status = str(payload.get('fraud_status') or '')
        return GatewayNotification(
            gateway_order_id=order_id,
            transaction_status=transaction_status,
            fraud_status=fraud_status,
            payment_method=str(payload.get('payment_type') or ''),
            gross_amount=gross_amount,
            gateway_transaction_id=str(payload.get('transaction_id') or ''),
            outcome=map_outcome(transaction_status, fraud_status),
            raw=dict(payload),
        )

    def build_transaction_params(self, order, payment, gateway_order_id) -> Dict:
        # One summary line keeps the item total equal to the gross amount
        labels = {'dp': ('DP', 'Down Payment'), 'final': ('FINAL', 'Final Payment')}
        prefix, label = labels.get(payment.payment_type, ('FULL', 'Full Payment'))
        amount = int(payment.amount)
        customer = order.customer
        return {
            'transaction_details': {
                'order_id': gateway_order_id,
                'gross_amount': amount,
            },
            'customer_details': {
                'first_name': (customer.get_full_name() if customer else '') or 'Customer',
                'email': order.contact_email,
            },
            'item_details': [{
                'id': f"{prefix}-{order.order_number}",
                'price': amount,
                'quantity': 1,
                'name': f"{label} ({order.order_number})",
            }],
            'custom_field1': order.order_number,
        }


class MidtransGateway(PaymentGateway):
    """Midtrans Snap."""

    @property
    def api_url(self) -> str:
        return SNAP_PRODUCTION_URL if self.config.is_production else SNAP_SANDBOX_URL

    def _post(self, params):
        headers = {'Accept': 'application/json'}
        if self.config.notification_url:
            headers['X-Override-Notification'] = self.config.notification_url
        resp = requests.post(
            self.api_url,
            json=params,
            auth=(self.config.server_key, ''),
            headers=headers,
            timeout=self.config.timeout,
        )
        resp.raise_for_status()
        return resp.json()

    def create_transaction_token(self, order, payment) -> GatewayToken:
        if not self.config.server_key:
            raise GatewayError('Payment gateway server key is not configured')

        gateway_order_id = self.new_gateway_order_id(payment)
        params = self.build_transaction_params(order, payment, gateway_order_id)
        logger.info(
            f"Requesting Snap token for order {order.order_number}, payment {payment.id}, "
            f"gateway order {gateway_order_id}, amount {payment.amount}"
        )

        try:
            data = http_retry(self.config.max_attempts)(self._post)(params)
        except requests.RequestException as e:
            logger.error(f"Snap token request failed for gateway order {gateway_order_id}: {e}")
            raise GatewayError()
        except ValueError as e:
            logger.error(f"Snap answered with invalid JSON for gateway order {gateway_order_id}: {e}")
            raise GatewayError()

        token = data.get('token')
        if not token:
            logger.error(f"Snap answer without token for gateway order {gateway_order_id}: {data}")
            raise GatewayError()

        return GatewayToken(
            token=token,
            redirect_url=data.get('redirect_url', ''),
            gateway_order_id=gateway_order_id,
        )


class DummyGateway(PaymentGateway):
    """
    Local stand-in for development and tests. Issues tokens without any
    network call and signs notifications with the configured server key.
    """

    def create_transaction_token(self, order, payment) -> GatewayToken:
        gateway_order_id = self.new_gateway_order_id(payment)
        token = secrets.token_hex(16)
        logger.info(f"Dummy token issued for order {order.order_number}, gateway order {gateway_order_id}")
        return GatewayToken(
            token=token,
            redirect_url=f"https://dummy-gateway.local/pay/{token}",
            gateway_order_id=gateway_order_id,
        )

    def build_notification(self, gateway_order_id, transaction_status, gross_amount,
                           status_code='200', fraud_status='accept', payment_type='bank_transfer',
                           transaction_id=None) -> Dict:
        gross_amount = str(gross_amount)
        return {
            'order_id': gateway_order_id,
            'status_code': status_code,
            'gross_amount': gross_amount,
            'transaction_status': transaction_status,
            'fraud_status': fraud_status,
            'payment_type': payment_type,
            'transaction_id': transaction_id or secrets.token_hex(8),
            'signature_key': self.sign(gateway_order_id, status_code, gross_amount),
        }


def get_gateway() -> PaymentGateway:
    backend = getattr(settings, 'PAYMENT_GATEWAY', {}).get('BACKEND', 'orders.gateways.MidtransGateway')
    gateway_class = import_string(backend)
    return gateway_class(GatewayConfig.from_settings())

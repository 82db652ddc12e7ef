"""
Shared fixtures for the order tests: a small catalog, a local gateway and
shortcuts for placing and paying orders.
"""
from datetime import timedelta
from decimal import Decimal

from django.utils import timezone

from catalog.models import Category, Product, ProductVariant
from orders.checkout import CartLine, CheckoutData, CheckoutService, ShippingSelection
from orders.config import OrderConfig
from orders.gateways import DummyGateway, GatewayConfig
from orders.webhooks import PaymentReconciler
from promotions.models import PromoCode

SERVER_KEY = 'test-server-key'

TEST_GATEWAY_SETTINGS = {
    'BACKEND': 'orders.gateways.DummyGateway',
    'SERVER_KEY': SERVER_KEY,
    'CLIENT_KEY': '',
    'IS_PRODUCTION': False,
    'NOTIFICATION_URL': '',
    'TIMEOUT': 5,
    'MAX_ATTEMPTS': 1,
}


def make_gateway():
    return DummyGateway(GatewayConfig(server_key=SERVER_KEY))


def make_variant(sku='CLS-HC-A5', price='10000', stock=500, digital=False, product_name=None):
    category, _ = Category.objects.get_or_create(name='Wedding Invitations')
    product_type = Product.ProductType.DIGITAL if digital else Product.ProductType.PHYSICAL
    product = Product.objects.create(
        name=product_name or f'Product {sku}',
        slug=sku.lower(),
        category=category,
        product_type=product_type,
    )
    return ProductVariant.objects.create(
        product=product,
        sku=sku,
        name=sku,
        price=Decimal(price),
        stock=stock,
    )


def make_service(gateway=None, config=None):
    return CheckoutService(config=config or OrderConfig(), gateway=gateway or make_gateway())


def checkout_data(lines, payment_option='full', promo_code='', guest_email='', shipping_cost='0'):
    return CheckoutData(
        lines=[CartLine(variant_id=variant.id, quantity=quantity) for variant, quantity in lines],
        shipping=ShippingSelection(method='courier', cost=Decimal(shipping_cost), courier='jne', service='REG'),
        payment_option=payment_option,
        promo_code=promo_code,
        guest_email=guest_email,
    )


def place_order(customer, lines, service=None, **options):
    service = service or make_service()
    return service.checkout(checkout_data(lines, **options), customer)


def notify(gateway, payment, transaction_status, amount=None, **extra):
    """Deliver a signed notification for ``payment`` and return the reconcile result."""
    gateway_order_id = extra.pop('gateway_order_id', None) or payment.transaction_id or f'{payment.id}-TEST'
    payload = gateway.build_notification(
        gateway_order_id,
        transaction_status,
        amount if amount is not None else payment.amount,
        **extra,
    )
    return PaymentReconciler(gateway).reconcile(payload)


def make_promo(code='SAVE10', **overrides):
    now = timezone.now()
    values = {
        'code': code,
        'discount_type': PromoCode.DiscountType.PERCENTAGE,
        'discount_value': Decimal('10'),
        'max_discount_amount': Decimal('50000'),
        'valid_from': now - timedelta(days=1),
        'valid_until': now + timedelta(days=30),
    }
    values.update(overrides)
    return PromoCode.objects.create(**values)

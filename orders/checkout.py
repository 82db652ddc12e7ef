"""
Checkout: turns a cart into an order with its first payment.

Everything that touches stock, the promo code and the order rows runs in a
single transaction:
1. Check every variant exists and is on sale
2. Lock variant rows (ascending id) and reserve stock
3. Price the lines from the locked rows; client prices are never used
4. Lock, validate and redeem the promo code
5. Create the order, its items and the initial payment

Any failure rolls all of it back. The gateway token is requested only after
commit, so no row lock is held during the network call. A token failure
leaves the order in Pending Payment, payable later via retry.
"""
import logging
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from django.db import transaction
from django.utils.translation import gettext as _

from catalog.models import ProductVariant
from catalog.services import reserve_lines
from core.exceptions import (
    Forbidden,
    GatewayError,
    NoPendingFinalPayment,
    OrderValidationError,
    ResourceNotFound,
)
from core.money import ZERO, quantize_amount, to_decimal
from promotions.services import redeem_promo_code, validate_promo_code
from .audit import log_activity
from .config import OrderConfig
from .gateways import GatewayToken, PaymentGateway, get_gateway
from .models import Order, OrderItem, Payment, generate_order_number
from .state import (
    OrderPaymentStatus,
    OrderStatus,
    PaymentOption,
    PaymentStatus,
    PaymentType,
    transition,
)

logger = logging.getLogger(__name__)

CHECKOUT_SCHEMA_VERSION = 1


@dataclass(frozen=True)
class CartLine:
    variant_id: int
    quantity: int
    customization: Dict = field(default_factory=dict)


@dataclass(frozen=True)
class ShippingSelection:
    method: str = ''
    cost: Decimal = ZERO
    courier: str = ''
    service: str = ''
    address: str = ''


@dataclass(frozen=True)
class InvitationDetails:
    """Couple and event details printed on the invitation."""
    bride_full_name: str = ''
    groom_full_name: str = ''
    bride_nickname: str = ''
    groom_nickname: str = ''
    bride_parents: str = ''
    groom_parents: str = ''
    akad_date: str = ''
    akad_time: str = ''
    akad_location: str = ''
    reception_date: str = ''
    reception_time: str = ''
    reception_location: str = ''
    gmaps_link: str = ''


@dataclass(frozen=True)
class CheckoutData:
    lines: List[CartLine]
    shipping: ShippingSelection = field(default_factory=ShippingSelection)
    payment_option: str = PaymentOption.FULL
    promo_code: str = ''
    guest_email: str = ''
    invitation: Optional[InvitationDetails] = None
    schema_version: int = CHECKOUT_SCHEMA_VERSION

    @classmethod
    def from_dict(cls, data: Dict):
        """Build from serializer ``validated_data``."""
        shipping = data.get('shipping') or {}
        invitation = data.get('invitation')
        return cls(
            lines=[
                CartLine(
                    variant_id=line['variant_id'],
                    quantity=line['quantity'],
                    customization=line.get('customization') or {},
                )
                for line in data.get('items', [])
            ],
            shipping=ShippingSelection(
                method=shipping.get('method', ''),
                cost=to_decimal(shipping.get('cost', ZERO)),
                courier=shipping.get('courier', ''),
                service=shipping.get('service', ''),
                address=shipping.get('address', ''),
            ),
            payment_option=data.get('payment_option', PaymentOption.FULL),
            promo_code=(data.get('promo_code') or '').strip(),
            guest_email=data.get('guest_email') or '',
            invitation=InvitationDetails(**invitation) if invitation else None,
        )

    def to_snapshot(self) -> Dict:
        snapshot = asdict(self)
        snapshot['shipping']['cost'] = str(self.shipping.cost)
        snapshot['payment_option'] = str(self.payment_option)
        return snapshot


@dataclass
class CheckoutResult:
    order: Order
    payment: Payment
    token: Optional[GatewayToken] = None
    token_error: Optional[GatewayError] = None

    @property
    def snap_token(self) -> Optional[str]:
        return self.token.token if self.token else None

    @property
    def redirect_url(self) -> Optional[str]:
        return self.token.redirect_url if self.token else None


class CheckoutService:

    def __init__(self, config: Optional[OrderConfig] = None, gateway: Optional[PaymentGateway] = None):
        self.config = config or OrderConfig.from_settings()
        self.gateway = gateway or get_gateway()

    def checkout(self, data: CheckoutData, customer=None) -> CheckoutResult:
        """
        Create an order and its initial payment, then ask the gateway for a token.

        Raises:
            OrderValidationError: Input is invalid or references unknown variants.
            OutOfStock: A line cannot be reserved; nothing is persisted.
            InvalidPromoCode: The promo code does not apply; nothing is persisted.
        """
        if customer is not None and not customer.is_authenticated:
            customer = None
        self._validate(data, customer)

        with transaction.atomic():
            order, payment = self._create_order(data, customer)

        result = CheckoutResult(order=order, payment=payment)
        try:
            result.token = self.request_token(order, payment)
        except GatewayError as e:
            logger.error(f"Order {order.order_number} created but payment token request failed: {e}")
            result.token_error = e
        return result

    def _validate(self, data: CheckoutData, customer):
        if not data.lines:
            raise OrderValidationError(_('Order must contain at least one item.'))
        for idx, line in enumerate(data.lines):
            if not isinstance(line.quantity, int) or line.quantity < 1:
                raise OrderValidationError(
                    _('Item %(index)s: quantity must be a positive integer.') % {'index': idx}
                )
        if data.payment_option not in PaymentOption.values:
            raise OrderValidationError(_('Unknown payment option.'))
        if to_decimal(data.shipping.cost) < ZERO:
            raise OrderValidationError(_('Shipping cost cannot be negative.'))
        if customer is None and not data.guest_email:
            raise OrderValidationError(_('An email address is required for guest checkout.'))

    @staticmethod
    def _merge_lines(lines: List[CartLine]) -> Dict[int, CartLine]:
        merged = {}
        for line in lines:
            existing = merged.get(line.variant_id)
            if existing is None:
                merged[line.variant_id] = line
            else:
                merged[line.variant_id] = CartLine(
                    variant_id=line.variant_id,
                    quantity=existing.quantity + line.quantity,
                    customization=existing.customization or line.customization,
                )
        return merged

    def _create_order(self, data: CheckoutData, customer):
        quantum = self.config.currency_quantum
        lines = self._merge_lines(data.lines)

        on_sale = set(
            ProductVariant.objects.filter(
                pk__in=lines.keys(), is_active=True, product__is_active=True,
            ).values_list('pk', flat=True)
        )
        unknown = sorted(set(lines) - on_sale)
        if unknown:
            raise OrderValidationError(
                _('Products not found or unavailable: %(ids)s') % {'ids': ', '.join(map(str, unknown))},
                variant_ids=unknown,
            )

        # Locks variant rows; raises OutOfStock and aborts the transaction
        variants = reserve_lines((variant_id, line.quantity) for variant_id, line in lines.items())

        subtotal = sum(
            (variants[variant_id].price * line.quantity for variant_id, line in lines.items()),
            ZERO,
        )

        promo_code = None
        discount = ZERO
        if data.promo_code:
            validation = validate_promo_code(data.promo_code, customer, subtotal, lock=True, quantum=quantum)
            promo_code = validation.promo_code
            discount = validation.discount

        shipping_cost = quantize_amount(data.shipping.cost, quantum)
        total = subtotal - discount + shipping_cost

        option = PaymentOption(data.payment_option)
        if option == PaymentOption.FULL:
            initial_amount = total
        else:
            initial_amount = quantize_amount(total * self.config.rate_for(option), quantum)
        # The gateway refuses zero-amount transactions
        if initial_amount <= ZERO:
            raise OrderValidationError(_('The order total must be greater than zero.'))

        order = Order.objects.create(
            customer=customer,
            guest_email='' if customer else data.guest_email,
            order_number=generate_order_number(),
            status=OrderStatus.PENDING_PAYMENT,
            payment_status=OrderPaymentStatus.PENDING,
            payment_option=option,
            subtotal_amount=subtotal,
            discount_amount=discount,
            shipping_cost=shipping_cost,
            total_amount=total,
            shipping_method=data.shipping.method,
            courier=data.shipping.courier,
            shipping_service=data.shipping.service,
            shipping_address=data.shipping.address,
            promo_code=promo_code,
            checkout_snapshot=data.to_snapshot(),
        )

        OrderItem.objects.bulk_create([
            OrderItem(
                order=order,
                product=variants[variant_id].product,
                variant=variants[variant_id],
                product_name=variants[variant_id].product.name,
                variant_name=variants[variant_id].name,
                sku=variants[variant_id].sku,
                is_digital=variants[variant_id].product.is_digital,
                quantity=line.quantity,
                unit_price=variants[variant_id].price,
                sub_total=variants[variant_id].price * line.quantity,
                customization={'schema_version': CHECKOUT_SCHEMA_VERSION, **line.customization},
            )
            for variant_id, line in sorted(lines.items())
        ])

        if promo_code is not None:
            redeem_promo_code(promo_code)

        payment = Payment.objects.create(
            order=order,
            amount=initial_amount,
            payment_type=option.payment_type,
            status=PaymentStatus.PENDING,
        )

        log_activity(
            log_type='order',
            action='created',
            subject=order,
            user=customer,
            description=f"Order {order.order_number} placed",
            properties={
                'order_number': order.order_number,
                'total_amount': str(total),
                'payment_option': str(option),
                'initial_payment': str(initial_amount),
                'promo_code': promo_code.code if promo_code else None,
            },
        )
        logger.info(
            f"Order {order.order_number} created: {len(lines)} lines, subtotal {subtotal}, "
            f"discount {discount}, shipping {shipping_cost}, total {total}, "
            f"initial {option.payment_type} payment {initial_amount}"
        )
        return order, payment

    def request_token(self, order: Order, payment: Payment) -> GatewayToken:
        """
        Get a fresh gateway token for ``payment`` and store it.

        Must not be called while holding row locks: this is a network call.
        """
        token = self.gateway.create_transaction_token(order, payment)
        updated = Payment.objects.filter(pk=payment.pk, status=PaymentStatus.PENDING).update(
            transaction_id=token.gateway_order_id,
            snap_token=token.token,
            redirect_url=token.redirect_url,
        )
        if not updated:
            logger.warning(f"Payment {payment.id} is no longer pending, token {token.gateway_order_id} not stored")
        payment.transaction_id = token.gateway_order_id
        payment.snap_token = token.token
        payment.redirect_url = token.redirect_url
        return token

    def initiate_final_payment(self, order: Order, user) -> Payment:
        """
        Start paying the remaining balance of a partially paid order.

        Raises:
            Forbidden: ``user`` does not own the order.
            OrderValidationError: Order is not partially paid.
            NoPendingFinalPayment: There is no outstanding final payment.
            GatewayError: Token request failed; the payment stays pending.
        """
        if not order.is_owned_by(user):
            raise Forbidden()
        if order.status != OrderStatus.PARTIALLY_PAID:
            raise OrderValidationError(_('Final payment is only available for partially paid orders.'))

        payment = order.payments.filter(
            payment_type=PaymentType.FINAL,
            status=PaymentStatus.PENDING,
        ).first()
        if payment is None:
            raise NoPendingFinalPayment()

        self.request_token(order, payment)
        logger.info(f"Final payment {payment.id} initiated for order {order.order_number}")
        return payment

    def retry_payment(self, order: Order, user) -> Payment:
        """
        Request a new token for an unpaid or failed payment.

        A failed payment is put back to pending and the order returns to the
        status it had before the failure.
        """
        if not order.is_owned_by(user):
            raise Forbidden()
        if order.status not in (OrderStatus.PENDING_PAYMENT, OrderStatus.FAILED):
            raise OrderValidationError(_('This order has no payment to retry.'))

        with transaction.atomic():
            order = Order.objects.select_for_update().get(pk=order.pk)
            payment = (
                Payment.objects.select_for_update()
                .filter(order=order, status__in=[PaymentStatus.PENDING, PaymentStatus.FAILED])
                .order_by('-created_at', '-id')
                .first()
            )
            if payment is None:
                raise ResourceNotFound(_('No payment found for this order.'))

            if payment.status == PaymentStatus.FAILED:
                payment.status = PaymentStatus.PENDING
                payment.save(update_fields=['status', 'updated_at'])

            if order.status == OrderStatus.FAILED:
                if payment.payment_type == PaymentType.FINAL:
                    target, payment_status = OrderStatus.PARTIALLY_PAID, OrderPaymentStatus.PARTIALLY_PAID
                else:
                    target, payment_status = OrderStatus.PENDING_PAYMENT, OrderPaymentStatus.PENDING
                order.payment_status = payment_status
                transition(
                    order, target, actor=user, reason='payment retry',
                    properties={'update_fields': ['payment_status'], 'payment_id': payment.id},
                )

        self.request_token(order, payment)
        logger.info(f"Payment {payment.id} retried for order {order.order_number}")
        return payment

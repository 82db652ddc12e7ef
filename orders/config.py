"""
Order policy configuration, built once from ``settings.ORDERS`` and passed
to the services that need it.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import FrozenSet, Mapping, Optional

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from .state import OrderStatus, PaymentOption

DEFAULT_DOWN_PAYMENT_RATES = {
    PaymentOption.FULL: Decimal('1.00'),
    PaymentOption.DP_30: Decimal('0.30'),
    PaymentOption.DP_50: Decimal('0.50'),
}

DEFAULT_CANCELLABLE_STATUSES = frozenset({
    OrderStatus.PENDING_PAYMENT,
    OrderStatus.PARTIALLY_PAID,
    OrderStatus.PAID,
    OrderStatus.PROCESSING,
    OrderStatus.DESIGN_APPROVAL,
})


@dataclass(frozen=True)
class OrderConfig:
    down_payment_rates: Mapping[str, Decimal] = field(
        default_factory=lambda: dict(DEFAULT_DOWN_PAYMENT_RATES)
    )
    cancellable_statuses: FrozenSet[str] = DEFAULT_CANCELLABLE_STATUSES
    # Orders with money received can only be cancelled within this window; None disables it
    cancellation_window_hours: Optional[int] = 24
    unpaid_order_ttl_hours: int = 24
    currency_quantum: Decimal = Decimal('1')

    def rate_for(self, payment_option) -> Decimal:
        try:
            return self.down_payment_rates[PaymentOption(payment_option)]
        except (KeyError, ValueError):
            raise ImproperlyConfigured(f"No payment rate configured for option {payment_option!r}")

    @classmethod
    def from_settings(cls):
        raw = getattr(settings, 'ORDERS', {})

        rates = dict(DEFAULT_DOWN_PAYMENT_RATES)
        for option, rate in raw.get('DOWN_PAYMENT_RATES', {}).items():
            rates[PaymentOption(option)] = Decimal(str(rate))

        statuses = raw.get('CANCELLABLE_STATUSES')
        if statuses is None:
            cancellable = DEFAULT_CANCELLABLE_STATUSES
        else:
            try:
                cancellable = frozenset(OrderStatus(s) for s in statuses)
            except ValueError as e:
                raise ImproperlyConfigured(f"Invalid ORDERS['CANCELLABLE_STATUSES']: {e}")

        return cls(
            down_payment_rates=rates,
            cancellable_statuses=cancellable,
            cancellation_window_hours=raw.get('CANCELLATION_WINDOW_HOURS', 24),
            unpaid_order_ttl_hours=raw.get('UNPAID_ORDER_TTL_HOURS', 24),
            currency_quantum=Decimal(str(raw.get('CURRENCY_QUANTUM', '1'))),
        )

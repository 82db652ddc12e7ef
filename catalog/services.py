"""
Inventory reservation.

Stock is reserved at checkout and restored when an order is cancelled. Both
operations must run inside the caller's ``transaction.atomic()`` block: the
variant row is locked with ``select_for_update()`` so concurrent checkouts
against the same variant serialize instead of racing past zero.
"""
import logging
from typing import Dict, Iterable, Optional, Tuple

from django.db import transaction
from django.db.models import F
from django.db.transaction import TransactionManagementError

from core.exceptions import OrderValidationError, OutOfStock
from .models import ProductVariant

logger = logging.getLogger(__name__)


def _require_atomic():
    if not transaction.get_connection().in_atomic_block:
        raise TransactionManagementError(
            "Stock changes must run inside the caller's transaction"
        )


def reserve_stock(variant_id: int, quantity: int) -> ProductVariant:
    """
    Lock a variant row and take ``quantity`` units out of its stock.

    Raises:
        OutOfStock: Variant is missing, inactive or has fewer than ``quantity`` units.
            The caller must abort its transaction.
    """
    _require_atomic()
    if quantity < 1:
        raise OrderValidationError(f"Quantity for variant {variant_id} must be at least 1")

    try:
        variant = ProductVariant.objects.select_for_update().select_related('product').get(pk=variant_id)
    except ProductVariant.DoesNotExist:
        raise OutOfStock(variant_id, quantity, 0)

    if not variant.is_active or not variant.product.is_active:
        raise OutOfStock(variant_id, quantity, 0, variant.display_name)

    if variant.stock < quantity:
        logger.warning(
            f"Reservation refused for variant {variant_id}: "
            f"requested {quantity}, available {variant.stock}"
        )
        raise OutOfStock(variant_id, quantity, variant.stock, variant.display_name)

    variant.stock -= quantity
    variant.save(update_fields=['stock', 'updated_at'])

    logger.debug(f"Reserved {quantity} of variant {variant_id}, remaining stock: {variant.stock}")
    return variant


def reserve_lines(lines: Iterable[Tuple[int, int]]) -> Dict[int, ProductVariant]:
    """
    Reserve ``(variant_id, quantity)`` pairs all-or-nothing.

    Rows are locked in variant id order to prevent deadlocks between
    checkouts that share variants.
    """
    reserved = {}
    for variant_id, quantity in sorted(lines):
        reserved[variant_id] = reserve_stock(variant_id, quantity)
    return reserved


def restore_stock(variant_id: Optional[int], quantity: int) -> Optional[ProductVariant]:
    """
    Put ``quantity`` units back on a variant. Missing variants are logged and skipped.
    """
    _require_atomic()
    if variant_id is None:
        logger.warning("Order item has no variant, skipping stock restoration")
        return None

    variant = ProductVariant.objects.select_for_update().filter(pk=variant_id).first()
    if variant is None:
        logger.warning(f"Variant {variant_id} not found, skipping stock restoration")
        return None

    ProductVariant.objects.filter(pk=variant_id).update(stock=F('stock') + quantity)
    variant.refresh_from_db(fields=['stock'])

    logger.info(f"Restored {quantity} of variant {variant_id}, new stock: {variant.stock}")
    return variant

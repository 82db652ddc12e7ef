"""
Digital invitation issuance for paid orders.
"""
import logging
import secrets
import string
from typing import List

from django.db import transaction
from django.utils import timezone

from .models import DigitalInvitation, Order

logger = logging.getLogger(__name__)

SLUG_ALPHABET = string.ascii_lowercase + string.digits


def generate_invitation_slug() -> str:
    while True:
        slug = 'inv-' + ''.join(secrets.choice(SLUG_ALPHABET) for _ in range(10))
        if not DigitalInvitation.objects.filter(slug=slug).exists():
            return slug


def issue_invitations_for_order(order: Order) -> List[DigitalInvitation]:
    """
    Create and activate one invitation per digital item of ``order``.

    Safe to run more than once: items that already have an invitation are
    skipped, so only newly issued invitations are returned.
    """
    issued = []
    with transaction.atomic():
        # Serializes concurrent runs for the same order
        order = Order.objects.select_for_update().get(pk=order.pk)
        items = order.items.filter(is_digital=True, digital_invitation__isnull=True)
        for item in items:
            now = timezone.now()
            invitation = DigitalInvitation.objects.create(
                order=order,
                order_item=item,
                customer_id=order.customer_id,
                slug=generate_invitation_slug(),
                status=DigitalInvitation.Status.ACTIVE,
                activated_at=now,
            )
            issued.append(invitation)
            logger.info(f"Digital invitation {invitation.slug} issued for order {order.order_number}, item {item.id}")

    if not issued:
        logger.info(f"No digital invitations to issue for order {order.order_number}")
    return issued

"""
Tests for stock reservation.

Test Cases:
1. Reservation decrements stock under a transaction
2. Shortage raises OutOfStock and changes nothing
3. Inactive or missing variants cannot be reserved
4. Restoration puts stock back; missing variants are skipped
5. Stock changes outside a transaction are refused
"""
from decimal import Decimal
from unittest.mock import patch

from django.db import transaction
from django.db.transaction import TransactionManagementError
from django.test import TestCase

from catalog.models import Category, Product, ProductVariant
from catalog.services import reserve_lines, reserve_stock, restore_stock
from core.exceptions import OrderValidationError, OutOfStock


class StockReservationTestCase(TestCase):
    """Test cases for reserve_stock / restore_stock."""

    def setUp(self):
        self.category = Category.objects.create(name='Wedding Cards')
        self.product = Product.objects.create(
            name='Classic Hardcover',
            slug='classic-hardcover',
            category=self.category,
        )
        self.variant = ProductVariant.objects.create(
            product=self.product,
            sku='CLS-HC-A5',
            name='A5',
            price=Decimal('5000.00'),
            stock=10,
        )
        self.other = ProductVariant.objects.create(
            product=self.product,
            sku='CLS-HC-A6',
            name='A6',
            price=Decimal('4000.00'),
            stock=3,
        )

    def test_reserve_decrements_stock(self):
        with transaction.atomic():
            variant = reserve_stock(self.variant.id, 4)

        self.assertEqual(variant.stock, 6)
        self.variant.refresh_from_db()
        self.assertEqual(self.variant.stock, 6)

    def test_reserve_exact_stock(self):
        with transaction.atomic():
            reserve_stock(self.variant.id, 10)

        self.variant.refresh_from_db()
        self.assertEqual(self.variant.stock, 0)
        self.assertTrue(self.variant.is_out_of_stock)

    def test_shortage_raises_out_of_stock(self):
        with self.assertRaises(OutOfStock) as context:
            with transaction.atomic():
                reserve_stock(self.variant.id, 11)

        self.assertEqual(context.exception.variant_id, self.variant.id)
        self.assertEqual(context.exception.requested, 11)
        self.assertEqual(context.exception.available, 10)
        self.variant.refresh_from_db()
        self.assertEqual(self.variant.stock, 10)

    def test_reserve_lines_is_all_or_nothing(self):
        """
        Given: Variant A has 10 units, variant B has 3
        When: Reserving 5 of A and 4 of B in one transaction
        Then: OutOfStock for B and A is untouched after rollback
        """
        with self.assertRaises(OutOfStock) as context:
            with transaction.atomic():
                reserve_lines([(self.other.id, 4), (self.variant.id, 5)])

        self.assertEqual(context.exception.variant_id, self.other.id)
        self.variant.refresh_from_db()
        self.other.refresh_from_db()
        self.assertEqual(self.variant.stock, 10)
        self.assertEqual(self.other.stock, 3)

    def test_inactive_variant_cannot_be_reserved(self):
        self.variant.is_active = False
        self.variant.save()

        with self.assertRaises(OutOfStock):
            with transaction.atomic():
                reserve_stock(self.variant.id, 1)

    def test_inactive_product_cannot_be_reserved(self):
        self.product.is_active = False
        self.product.save()

        with self.assertRaises(OutOfStock):
            with transaction.atomic():
                reserve_stock(self.variant.id, 1)

    def test_missing_variant_cannot_be_reserved(self):
        with self.assertRaises(OutOfStock) as context:
            with transaction.atomic():
                reserve_stock(999999, 1)
        self.assertEqual(context.exception.available, 0)

    def test_quantity_must_be_positive(self):
        with self.assertRaises(OrderValidationError):
            with transaction.atomic():
                reserve_stock(self.variant.id, 0)

    def test_restore_increments_stock(self):
        with transaction.atomic():
            variant = restore_stock(self.variant.id, 5)

        self.assertEqual(variant.stock, 15)

    def test_restore_skips_missing_variant(self):
        with transaction.atomic():
            self.assertIsNone(restore_stock(999999, 5))
            self.assertIsNone(restore_stock(None, 5))

    def test_requires_transaction(self):
        # TestCase wraps each test in a transaction, so fake a connection outside one
        with patch('catalog.services.transaction.get_connection') as get_connection:
            get_connection.return_value.in_atomic_block = False
            with self.assertRaises(TransactionManagementError):
                reserve_stock(self.variant.id, 1)

        self.variant.refresh_from_db()
        self.assertEqual(self.variant.stock, 10)

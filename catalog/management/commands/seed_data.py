"""
Management command to seed the database with a sample invitation catalog.

Generates:
- Invitation categories
- Physical and digital products with priced, stocked variants
- A few promo codes for trying out checkout

Usage:
    python manage.py seed_data
    python manage.py seed_data --clear  # Clear existing data first
"""
import random
from datetime import timedelta
from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone
from django.utils.text import slugify

from catalog.models import Category, Product, ProductVariant
from promotions.models import PromoCode

CATALOG = {
    'Printed Invitations': {
        'type': Product.ProductType.PHYSICAL,
        'products': ['Rustic Kraft Card', 'Floral Watercolor Card', 'Gold Foil Classic', 'Javanese Batik Card'],
        'variants': [('Art Paper 260gsm', Decimal('8500')), ('Jasmine Paper', Decimal('12500')),
                     ('Hardcover', Decimal('18000'))],
    },
    'Digital Invitations': {
        'type': Product.ProductType.DIGITAL,
        'products': ['Minimalist Website', 'Elegant Story Website', 'Video Invitation'],
        'variants': [('Basic', Decimal('150000')), ('Premium', Decimal('350000'))],
    },
    'Souvenirs': {
        'type': Product.ProductType.PHYSICAL,
        'products': ['Mini Succulent', 'Scented Candle', 'Wooden Coaster'],
        'variants': [('Standard', Decimal('7000')), ('Gift Box', Decimal('11000'))],
    },
}


class Command(BaseCommand):
    help = 'Seed the database with sample categories, products, variants and promo codes'

    def add_arguments(self, parser):
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing catalog data before seeding',
        )
        parser.add_argument(
            '--max-stock',
            type=int,
            default=2000,
            help='Upper bound for random variant stock (default: 2000)',
        )

    def handle(self, *args, **options):
        if options['clear']:
            self.stdout.write('Clearing existing data...')
            self._clear_data()

        self.stdout.write('Starting database seeding...')

        with transaction.atomic():
            variants = self._create_catalog(options['max_stock'])
            promo_codes = self._create_promo_codes()

        self.stdout.write(self.style.SUCCESS(
            f'Seeded {len(variants)} variants and {len(promo_codes)} promo codes'
        ))

    def _clear_data(self):
        """Clear catalog and promo data. Orders protect the variants they reference."""
        from orders.models import Order

        if Order.objects.exists():
            self.stdout.write(self.style.WARNING('Orders exist, only promo codes were cleared.'))
        else:
            ProductVariant.objects.all().delete()
            Product.objects.all().delete()
            Category.objects.all().delete()
        PromoCode.objects.filter(used_count=0).delete()

    def _create_catalog(self, max_stock):
        variants = []
        for category_name, details in CATALOG.items():
            category, _ = Category.objects.get_or_create(name=category_name)
            for product_name in details['products']:
                product, created = Product.objects.get_or_create(
                    slug=slugify(product_name),
                    defaults={
                        'name': product_name,
                        'category': category,
                        'product_type': details['type'],
                    },
                )
                if created:
                    self.stdout.write(f'  Created product: {product_name}')
                for variant_name, price in details['variants']:
                    # Digital products are not limited by physical stock
                    stock = max_stock if details['type'] == Product.ProductType.DIGITAL else random.randint(0, max_stock)
                    variant, _ = ProductVariant.objects.get_or_create(
                        sku=f'{product.slug}-{slugify(variant_name)}'.upper(),
                        defaults={
                            'product': product,
                            'name': variant_name,
                            'price': price,
                            'stock': stock,
                        },
                    )
                    variants.append(variant)
        return variants

    def _create_promo_codes(self):
        now = timezone.now()
        promo_rows = [
            dict(code='SAVE10', discount_type=PromoCode.DiscountType.PERCENTAGE,
                 discount_value=Decimal('10'), max_discount_amount=Decimal('50000')),
            dict(code='WEDDING50K', discount_type=PromoCode.DiscountType.FIXED,
                 discount_value=Decimal('50000'), min_purchase_amount=Decimal('500000'),
                 total_usage_limit=100),
        ]
        promo_codes = []
        for details in promo_rows:
            code = details.pop('code')
            promo, _ = PromoCode.objects.get_or_create(
                code=code,
                defaults=dict(valid_from=now, valid_until=now + timedelta(days=90), **details),
            )
            promo_codes.append(promo)
        return promo_codes

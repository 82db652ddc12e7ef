"""
Catalog Models - Products and the stock-carrying variants ordered at checkout.

Models:
    - Category: Product categorization
    - Product: Physical (printed) or digital invitation products
    - ProductVariant: Sellable SKU with its own price and stock counter
"""
from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models


class Category(models.Model):
    """
    Product category for organizing products.
    """
    name = models.CharField(
        max_length=100,
        unique=True,
        db_index=True,
        help_text="Unique category name"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Category'
        verbose_name_plural = 'Categories'
        ordering = ['name']

    def __str__(self):
        return self.name


class Product(models.Model):
    """
    Invitation product. Digital products get a digital invitation issued
    once the order is paid.
    """

    class ProductType(models.TextChoices):
        PHYSICAL = 'physical', 'Physical'
        DIGITAL = 'digital', 'Digital'

    name = models.CharField(
        max_length=200,
        db_index=True,
        help_text="Product name for display and search"
    )
    slug = models.SlugField(max_length=220, unique=True)
    description = models.TextField(blank=True, default='')
    category = models.ForeignKey(
        Category,
        on_delete=models.PROTECT,
        related_name='products',
    )
    product_type = models.CharField(
        max_length=20,
        choices=ProductType.choices,
        default=ProductType.PHYSICAL,
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether product is available for ordering"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Product'
        verbose_name_plural = 'Products'
        ordering = ['name']
        indexes = [
            models.Index(fields=['category', 'is_active'], name='product_category_active_idx'),
        ]

    def __str__(self):
        return self.name

    @property
    def is_digital(self) -> bool:
        return self.product_type == self.ProductType.DIGITAL


class ProductVariant(models.Model):
    """
    Sellable variant of a product (paper type, size, package...).

    ``stock`` is only changed through catalog.services inside a transaction
    holding a row lock; it can never go below zero.
    """
    product = models.ForeignKey(
        Product,
        on_delete=models.CASCADE,
        related_name='variants',
    )
    sku = models.CharField(max_length=64, unique=True)
    name = models.CharField(max_length=200)
    price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.00'))],
        help_text="Current unit price"
    )
    stock = models.PositiveIntegerField(
        default=0,
        help_text="Units available for new orders"
    )
    is_active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Product Variant'
        verbose_name_plural = 'Product Variants'
        ordering = ['product', 'name']

    def __str__(self):
        return f"{self.product.name} - {self.name} ({self.stock} in stock)"

    @property
    def display_name(self) -> str:
        return f"{self.product.name} - {self.name}"

    @property
    def is_out_of_stock(self) -> bool:
        return self.stock == 0

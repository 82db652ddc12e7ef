"""
Django Admin configuration for promo codes.
"""
from django.contrib import admin
from .models import PromoCode


@admin.register(PromoCode)
class PromoCodeAdmin(admin.ModelAdmin):
    list_display = [
        'code', 'discount_type', 'discount_value', 'max_discount_amount',
        'used_count', 'total_usage_limit', 'valid_from', 'valid_until', 'is_active'
    ]
    list_filter = ['discount_type', 'is_active']
    search_fields = ['code', 'description']
    readonly_fields = ['used_count', 'created_at', 'updated_at']

"""
Django Admin configuration for order models.

Status, amounts and payments are read-only here: they change only through
checkout, payment notifications and the cancellation workflow.
"""
from django.contrib import admin
from .models import ActivityLog, DigitalInvitation, Order, OrderCancellationRequest, OrderItem, Payment


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ['product_name', 'variant_name', 'sku', 'quantity', 'unit_price', 'sub_total']
    fields = readonly_fields
    can_delete = False


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    readonly_fields = ['payment_type', 'amount', 'status', 'transaction_id', 'paid_at']
    fields = readonly_fields
    can_delete = False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ['order_number', 'customer', 'status', 'payment_status', 'total_amount', 'item_count', 'created_at']
    list_filter = ['status', 'payment_status', 'payment_option', 'created_at']
    search_fields = ['order_number', 'customer__email', 'guest_email']
    ordering = ['-created_at']
    readonly_fields = [
        'order_number', 'status', 'payment_status', 'payment_option',
        'subtotal_amount', 'discount_amount', 'shipping_cost', 'total_amount',
        'promo_code', 'checkout_snapshot', 'created_at', 'updated_at',
    ]
    raw_id_fields = ['customer']
    inlines = [OrderItemInline, PaymentInline]

    def item_count(self, obj):
        return obj.items.count()
    item_count.short_description = 'Items'


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ['id', 'order', 'payment_type', 'amount', 'status', 'transaction_id', 'paid_at']
    list_filter = ['status', 'payment_type']
    search_fields = ['order__order_number', 'transaction_id', 'gateway_transaction_id']
    readonly_fields = [f.name for f in Payment._meta.fields]


@admin.register(OrderCancellationRequest)
class OrderCancellationRequestAdmin(admin.ModelAdmin):
    list_display = ['id', 'order', 'status', 'order_status_before', 'refund_amount', 'refund_status', 'created_at']
    list_filter = ['status', 'refund_status']
    search_fields = ['order__order_number']
    readonly_fields = [f.name for f in OrderCancellationRequest._meta.fields]


@admin.register(DigitalInvitation)
class DigitalInvitationAdmin(admin.ModelAdmin):
    list_display = ['slug', 'order', 'status', 'activated_at']
    list_filter = ['status']
    search_fields = ['slug', 'order__order_number']
    raw_id_fields = ['order', 'order_item', 'customer']


@admin.register(ActivityLog)
class ActivityLogAdmin(admin.ModelAdmin):
    list_display = ['created_at', 'log_type', 'action', 'subject_type', 'subject_id', 'user_name']
    list_filter = ['log_type', 'action']
    search_fields = ['description', 'user_name']

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

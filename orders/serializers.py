"""
Serializers for order, payment and cancellation endpoints.
"""
from decimal import Decimal

from rest_framework import serializers

from .models import Order, OrderCancellationRequest, OrderItem, Payment
from .state import OrderStatus, PaymentOption


class OrderItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderItem
        fields = [
            'id', 'product', 'variant', 'product_name', 'variant_name', 'sku',
            'is_digital', 'quantity', 'unit_price', 'sub_total', 'customization',
        ]


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = [
            'id', 'payment_type', 'amount', 'status', 'snap_token',
            'redirect_url', 'gateway_payment_method', 'paid_at', 'created_at',
        ]


class OrderSerializer(serializers.ModelSerializer):
    """
    Serializer for Order model with nested items and payments.
    Uses prefetch_related for optimized queries.
    """
    items = OrderItemSerializer(many=True, read_only=True)
    payments = PaymentSerializer(many=True, read_only=True)
    promo_code = serializers.CharField(source='promo_code.code', read_only=True, default=None)
    amount_paid = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    remaining_balance = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = Order
        fields = [
            'id', 'order_number', 'status', 'payment_status', 'payment_option',
            'subtotal_amount', 'discount_amount', 'shipping_cost', 'total_amount',
            'amount_paid', 'remaining_balance', 'promo_code',
            'shipping_method', 'courier', 'shipping_service', 'shipping_address',
            'items', 'payments', 'created_at', 'updated_at',
        ]
        read_only_fields = fields


class OrderListSerializer(serializers.ModelSerializer):
    """Compact serializer for listing a customer's orders."""
    item_count = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            'id', 'order_number', 'status', 'payment_status',
            'total_amount', 'item_count', 'created_at',
        ]

    def get_item_count(self, obj):
        # Use prefetched items count if available
        if hasattr(obj, '_prefetched_objects_cache') and 'items' in obj._prefetched_objects_cache:
            return len(obj.items.all())
        return obj.items.count()


class CartLineSerializer(serializers.Serializer):
    variant_id = serializers.IntegerField(min_value=1)
    quantity = serializers.IntegerField(min_value=1)
    customization = serializers.DictField(required=False, default=dict)


class ShippingSerializer(serializers.Serializer):
    method = serializers.CharField(max_length=50, required=False, allow_blank=True, default='')
    cost = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0'), default=Decimal('0'))
    courier = serializers.CharField(max_length=50, required=False, allow_blank=True, default='')
    service = serializers.CharField(max_length=50, required=False, allow_blank=True, default='')
    address = serializers.CharField(required=False, allow_blank=True, default='')


class InvitationDetailsSerializer(serializers.Serializer):
    bride_full_name = serializers.CharField(max_length=150, required=False, allow_blank=True)
    groom_full_name = serializers.CharField(max_length=150, required=False, allow_blank=True)
    bride_nickname = serializers.CharField(max_length=50, required=False, allow_blank=True)
    groom_nickname = serializers.CharField(max_length=50, required=False, allow_blank=True)
    bride_parents = serializers.CharField(max_length=255, required=False, allow_blank=True)
    groom_parents = serializers.CharField(max_length=255, required=False, allow_blank=True)
    akad_date = serializers.CharField(max_length=30, required=False, allow_blank=True)
    akad_time = serializers.CharField(max_length=30, required=False, allow_blank=True)
    akad_location = serializers.CharField(max_length=255, required=False, allow_blank=True)
    reception_date = serializers.CharField(max_length=30, required=False, allow_blank=True)
    reception_time = serializers.CharField(max_length=30, required=False, allow_blank=True)
    reception_location = serializers.CharField(max_length=255, required=False, allow_blank=True)
    gmaps_link = serializers.URLField(required=False, allow_blank=True)


class CheckoutSerializer(serializers.Serializer):
    """
    Request format:
    {
        "items": [{"variant_id": 1, "quantity": 100, "customization": {...}}],
        "shipping": {"method": "courier", "cost": "20000", "courier": "jne", "service": "REG",
                     "address": "..."},
        "payment_option": "dp_50",
        "promo_code": "SAVE10",
        "guest_email": "guest@example.com"
    }
    """
    items = CartLineSerializer(many=True)
    shipping = ShippingSerializer(required=False)
    payment_option = serializers.ChoiceField(choices=PaymentOption.choices, default=PaymentOption.FULL)
    promo_code = serializers.CharField(max_length=50, required=False, allow_blank=True, default='')
    guest_email = serializers.EmailField(required=False, allow_blank=True, default='')
    invitation = InvitationDetailsSerializer(required=False)

    def validate_items(self, value):
        if not value:
            raise serializers.ValidationError("At least one item is required")
        return value


class CancellationCreateSerializer(serializers.Serializer):
    reason = serializers.CharField(min_length=10, max_length=1000)


class CancellationRequestSerializer(serializers.ModelSerializer):
    order_number = serializers.CharField(source='order.order_number', read_only=True)

    class Meta:
        model = OrderCancellationRequest
        fields = [
            'id', 'order', 'order_number', 'requested_by', 'reason', 'status',
            'order_status_before', 'reviewed_by', 'reviewed_at', 'admin_notes',
            'refund_initiated', 'refund_amount', 'refund_transaction_id',
            'refund_status', 'stock_restored', 'created_at',
        ]
        read_only_fields = fields


class CancellationApproveSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    refund_amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)


class CancellationRejectSerializer(serializers.Serializer):
    notes = serializers.CharField()


class RefundCompleteSerializer(serializers.Serializer):
    refund_transaction_id = serializers.CharField(max_length=100)


class OrderStatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=OrderStatus.choices)
    reason = serializers.CharField(required=False, allow_blank=True, default='')

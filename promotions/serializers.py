"""
Serializers for promo code endpoints.
"""
from rest_framework import serializers
from .models import PromoCode


class PromoCodeValidateSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=50)
    subtotal = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)


class PromoCodePublicSerializer(serializers.ModelSerializer):
    class Meta:
        model = PromoCode
        fields = [
            'code', 'description', 'discount_type', 'discount_value',
            'min_purchase_amount', 'max_discount_amount', 'valid_until'
        ]

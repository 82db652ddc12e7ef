"""
Promo code API Views.

Implements:
- GET /promo-codes/ - Currently usable promo codes
- POST /promo-codes/validate/ - Preview the discount for a subtotal
"""
import logging

from rest_framework import generics, status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import InvalidPromoCode
from core.rate_limiting import RateLimitMixin
from .serializers import PromoCodePublicSerializer, PromoCodeValidateSerializer
from .services import get_active_promo_codes, validate_promo_code

logger = logging.getLogger(__name__)


class PromoCodeListView(generics.ListAPIView):
    permission_classes = [AllowAny]
    serializer_class = PromoCodePublicSerializer

    def get_queryset(self):
        return get_active_promo_codes().order_by('-created_at')


class PromoCodeValidateView(RateLimitMixin, APIView):
    """
    POST: Validate a promo code for the signed-in customer.

    Does not reserve or count a use; that happens at checkout.
    """
    rate_limit_scope = 'promo_validation'

    def post(self, request):
        serializer = PromoCodeValidateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            result = validate_promo_code(
                serializer.validated_data['code'],
                request.user,
                serializer.validated_data['subtotal'],
            )
        except InvalidPromoCode as e:
            logger.info(f"Promo code rejected for user {request.user.pk}: {e.reason}")
            return Response(e.to_dict(), status=e.status_code)

        return Response({
            'valid': True,
            'discount': str(result.discount),
            'code_details': result.details,
        }, status=status.HTTP_200_OK)

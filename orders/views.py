"""
Order API Views.

Implements:
- POST /checkout/ - Place an order and get a payment token
- GET /orders/ - The customer's orders
- GET /orders/{id}/ - Order detail with items and payments
- POST /orders/{id}/retry-payment/ - Fresh token for an unpaid or failed payment
- POST /orders/{id}/pay-final/ - Token for the remaining balance
- GET|POST /orders/{id}/cancel/ - Cancellation eligibility / request
- POST /webhooks/midtrans/ - Payment notifications
- Admin: order status updates and cancellation review
"""
import logging

from django.shortcuts import get_object_or_404
from rest_framework import generics, status
from rest_framework.permissions import AllowAny, IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import GatewayError, InvalidSignature, ServiceError
from core.rate_limiting import RateLimitMixin
from .cancellation import CancellationService
from .checkout import CheckoutData, CheckoutService
from .gateways import get_gateway
from .models import Order, OrderCancellationRequest
from .serializers import (
    CancellationApproveSerializer,
    CancellationCreateSerializer,
    CancellationRejectSerializer,
    CancellationRequestSerializer,
    CheckoutSerializer,
    OrderListSerializer,
    OrderSerializer,
    OrderStatusUpdateSerializer,
    PaymentSerializer,
    RefundCompleteSerializer,
)
from .services import advance_order_status, get_order_summary
from .webhooks import PaymentReconciler, ReconcileResult

logger = logging.getLogger(__name__)

GENERIC_ERROR = {'message': 'An unexpected error occurred. Please try again later.', 'code': 'server_error'}


def service_error_response(e: ServiceError):
    return Response(e.to_dict(), status=e.status_code)


def server_error_response():
    return Response(GENERIC_ERROR, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


def order_queryset():
    return Order.objects.select_related('promo_code').prefetch_related('items', 'payments')


class CheckoutView(RateLimitMixin, APIView):
    """
    POST: Place an order from cart lines.

    Guests may check out with a ``guest_email``; promo codes need a signed-in
    customer.

    Returns:
        - 201: Order created, with the payment token
        - 400 / 422: Validation, stock or promo code error
        - 500: Order created but the payment token could not be obtained;
          ``order_number`` is included so the customer can retry the payment
    """
    permission_classes = [AllowAny]
    rate_limit_scope = 'checkout'

    def get_service(self):
        return CheckoutService()

    def post(self, request):
        serializer = CheckoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = CheckoutData.from_dict(serializer.validated_data)

        try:
            result = self.get_service().checkout(data, request.user)
        except ServiceError as e:
            logger.warning(f"Checkout rejected: {e.code} {e}")
            return service_error_response(e)
        except Exception as e:
            logger.exception(f"Unexpected error during checkout: {e}")
            return server_error_response()

        order = order_queryset().get(pk=result.order.pk)
        if result.token_error is not None:
            return Response(
                {
                    'message': 'Your order was created but the payment could not be started. '
                               'Please retry the payment from your order page.',
                    'code': 'payment_initiation_failed',
                    'order_id': order.id,
                    'order_number': order.order_number,
                },
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        return Response(
            {
                'order': OrderSerializer(order).data,
                'snap_token': result.snap_token,
                'redirect_url': result.redirect_url,
            },
            status=status.HTTP_201_CREATED,
        )


class OrderListView(generics.ListAPIView):
    """
    GET: The signed-in customer's orders.

    Query Parameters:
        - status: Filter by order status
    """
    serializer_class = OrderListSerializer

    def get_queryset(self):
        queryset = Order.objects.filter(customer=self.request.user).prefetch_related('items')
        status_filter = self.request.query_params.get('status')
        if status_filter:
            queryset = queryset.filter(status=status_filter)
        return queryset.order_by('-created_at')


class OrderDetailView(generics.RetrieveAPIView):
    """GET: Order with items and payments. Customers only see their own orders."""
    serializer_class = OrderSerializer

    def get_queryset(self):
        if self.request.user.is_staff:
            return order_queryset()
        return order_queryset().filter(customer=self.request.user)


class PaymentTokenView(APIView):
    """Base for endpoints that hand out a fresh payment token."""

    def get_service(self):
        return CheckoutService()

    def start_payment(self, service, order, user):
        raise NotImplementedError

    def post(self, request, pk):
        order = get_object_or_404(Order, pk=pk)
        try:
            payment = self.start_payment(self.get_service(), order, request.user)
        except GatewayError as e:
            logger.error(f"Payment token request failed for order {order.order_number}: {e}")
            payload = e.to_dict()
            payload['order_number'] = order.order_number
            return Response(payload, status=e.status_code)
        except ServiceError as e:
            logger.warning(f"Payment for order {order.order_number} refused: {e.code} {e}")
            return service_error_response(e)
        except Exception as e:
            logger.exception(f"Unexpected error starting payment for order {order.order_number}: {e}")
            return server_error_response()

        return Response({
            'order_number': order.order_number,
            'payment': PaymentSerializer(payment).data,
            'snap_token': payment.snap_token,
            'redirect_url': payment.redirect_url,
        })


class RetryPaymentView(PaymentTokenView):

    def start_payment(self, service, order, user):
        return service.retry_payment(order, user)


class FinalPaymentView(PaymentTokenView):

    def start_payment(self, service, order, user):
        return service.initiate_final_payment(order, user)


class CancelOrderView(RateLimitMixin, APIView):
    """
    GET: Whether the order can be cancelled, and why not.
    POST: Ask for the order to be cancelled.
    """
    rate_limit_scope = 'cancellation'

    def get_order(self, request, pk):
        return get_object_or_404(Order, pk=pk, customer=request.user)

    def get(self, request, pk):
        order = self.get_order(request, pk)
        service = CancellationService()
        can_cancel = service.can_request_cancellation(order)
        return Response({
            'can_cancel': can_cancel,
            'reason': None if can_cancel else service.get_ineligibility_reason(order),
        })

    def post(self, request, pk):
        order = self.get_order(request, pk)
        serializer = CancellationCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            cancellation = CancellationService().create_cancellation_request(
                order, request.user, serializer.validated_data['reason'], request=request,
            )
        except ServiceError as e:
            logger.warning(f"Cancellation request for order {order.order_number} refused: {e}")
            return service_error_response(e)
        except Exception as e:
            logger.exception(f"Unexpected error creating cancellation request: {e}")
            return server_error_response()

        return Response(CancellationRequestSerializer(cancellation).data, status=status.HTTP_201_CREATED)


class MidtransWebhookView(APIView):
    """
    POST: Payment notification from Midtrans.

    Authenticated by the notification signature only. Replays and stale
    notifications are answered with 200 so the gateway stops resending them.
    """
    authentication_classes = []
    permission_classes = [AllowAny]

    def post(self, request):
        payload = request.data.dict() if hasattr(request.data, 'dict') else request.data

        try:
            result = PaymentReconciler(get_gateway()).reconcile(payload)
        except InvalidSignature:
            logger.warning(f"Rejected payment notification with invalid signature for {payload.get('order_id')}")
            return Response({'error': 'Invalid signature'}, status=status.HTTP_403_FORBIDDEN)
        except GatewayError as e:
            logger.warning(f"Malformed payment notification: {e}")
            return Response({'error': 'Invalid notification'}, status=status.HTTP_400_BAD_REQUEST)
        except Exception as e:
            logger.exception(f"Unexpected error processing payment notification: {e}")
            return Response({'error': 'Notification could not be processed'},
                            status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        if result.outcome == ReconcileResult.NOT_FOUND:
            return Response({'error': 'Payment not found'}, status=status.HTTP_404_NOT_FOUND)
        return Response({'status': 'ok'})


class AdminOrderStatusView(APIView):
    """POST: Move an order along the fulfilment chain."""
    permission_classes = [IsAdminUser]

    def post(self, request, pk):
        order = get_object_or_404(Order, pk=pk)
        serializer = OrderStatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            order = advance_order_status(
                order,
                serializer.validated_data['status'],
                request.user,
                reason=serializer.validated_data['reason'],
            )
        except ServiceError as e:
            return service_error_response(e)
        except Exception as e:
            logger.exception(f"Unexpected error updating order {order.order_number}: {e}")
            return server_error_response()

        return Response(get_order_summary(order.id))


class AdminCancellationListView(generics.ListAPIView):
    """
    GET: Cancellation requests, newest first.

    Query Parameters:
        - status: pending, approved or rejected
    """
    permission_classes = [IsAdminUser]
    serializer_class = CancellationRequestSerializer

    def get_queryset(self):
        queryset = OrderCancellationRequest.objects.select_related('order')
        status_filter = self.request.query_params.get('status', '').lower()
        if status_filter in OrderCancellationRequest.Status.values:
            queryset = queryset.filter(status=status_filter)
        return queryset.order_by('-created_at')


class AdminCancellationActionView(APIView):
    """Base for staff decisions on a cancellation request."""
    permission_classes = [IsAdminUser]
    serializer_class = None

    def perform(self, service, cancellation, data, request):
        raise NotImplementedError

    def post(self, request, pk):
        cancellation = get_object_or_404(OrderCancellationRequest, pk=pk)
        serializer = self.serializer_class(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            cancellation = self.perform(CancellationService(), cancellation, serializer.validated_data, request)
        except ServiceError as e:
            logger.warning(f"Cancellation request {pk} action refused: {e.code} {e}")
            return service_error_response(e)
        except Exception as e:
            logger.exception(f"Unexpected error on cancellation request {pk}: {e}")
            return server_error_response()

        return Response(CancellationRequestSerializer(cancellation).data)


class AdminCancellationApproveView(AdminCancellationActionView):
    serializer_class = CancellationApproveSerializer

    def perform(self, service, cancellation, data, request):
        return service.approve(
            cancellation, request.user,
            notes=data.get('notes'),
            refund_amount=data.get('refund_amount'),
            request=request,
        )


class AdminCancellationRejectView(AdminCancellationActionView):
    serializer_class = CancellationRejectSerializer

    def perform(self, service, cancellation, data, request):
        return service.reject(cancellation, request.user, data['notes'], request=request)


class AdminRefundCompleteView(AdminCancellationActionView):
    serializer_class = RefundCompleteSerializer

    def perform(self, service, cancellation, data, request):
        return service.complete_refund(cancellation, data['refund_transaction_id'], actor=request.user)

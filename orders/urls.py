"""
URL routing for order, payment and cancellation endpoints.
"""
from django.urls import path
from . import views

app_name = 'orders'

urlpatterns = [
    path('checkout/', views.CheckoutView.as_view(), name='checkout'),
    path('orders/', views.OrderListView.as_view(), name='order-list'),
    path('orders/<int:pk>/', views.OrderDetailView.as_view(), name='order-detail'),
    path('orders/<int:pk>/retry-payment/', views.RetryPaymentView.as_view(), name='order-retry-payment'),
    path('orders/<int:pk>/pay-final/', views.FinalPaymentView.as_view(), name='order-pay-final'),
    path('orders/<int:pk>/cancel/', views.CancelOrderView.as_view(), name='order-cancel'),
    path('webhooks/midtrans/', views.MidtransWebhookView.as_view(), name='midtrans-webhook'),
    path('admin/orders/<int:pk>/status/', views.AdminOrderStatusView.as_view(), name='admin-order-status'),
    path('admin/cancellation-requests/', views.AdminCancellationListView.as_view(),
         name='admin-cancellation-list'),
    path('admin/cancellation-requests/<int:pk>/approve/', views.AdminCancellationApproveView.as_view(),
         name='admin-cancellation-approve'),
    path('admin/cancellation-requests/<int:pk>/reject/', views.AdminCancellationRejectView.as_view(),
         name='admin-cancellation-reject'),
    path('admin/cancellation-requests/<int:pk>/refund-complete/', views.AdminRefundCompleteView.as_view(),
         name='admin-cancellation-refund-complete'),
]

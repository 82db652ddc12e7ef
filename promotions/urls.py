"""
URL routing for promo code endpoints.
"""
from django.urls import path
from . import views

app_name = 'promotions'

urlpatterns = [
    path('promo-codes/', views.PromoCodeListView.as_view(), name='promo-code-list'),
    path('promo-codes/validate/', views.PromoCodeValidateView.as_view(), name='promo-code-validate'),
]

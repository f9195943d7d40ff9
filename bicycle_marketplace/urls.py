"""
URL configuration for bicycle_marketplace project.

The `urlpatterns` list routes URLs to views. For more information please see:
    https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""
from django.urls import path
from rest_framework_simplejwt.views import (
    TokenObtainPairView,
    TokenRefreshView,
)
from core.views import (
    OfferCreateView,
    OfferAcceptView,
    OfferRejectView,
    OrderCreateView,
    OrderDetailView,
    OrderCancelView,
    PaymentProofView,
    AdminPaymentConfirmView,
    AdminSaleApproveView,
    AdminSaleRejectView,
    AdminBicycleApproveView,
)


urlpatterns = [
    # Offer endpoints
    path('api/offers/', OfferCreateView.as_view(), name='offer_create'),
    path('api/offers/<int:pk>/accept/', OfferAcceptView.as_view(), name='offer_accept'),
    path('api/offers/<int:pk>/reject/', OfferRejectView.as_view(), name='offer_reject'),

    # Order endpoints
    path('api/orders/', OrderCreateView.as_view(), name='order_create'),
    path('api/orders/<int:pk>/', OrderDetailView.as_view(), name='order_detail'),
    path('api/orders/<int:pk>/cancel/', OrderCancelView.as_view(), name='order_cancel'),
    path('api/orders/<int:pk>/payment-proof/', PaymentProofView.as_view(), name='order_payment_proof'),

    # Admin settlement endpoints
    path('api/admin/orders/<int:pk>/confirm-payment/', AdminPaymentConfirmView.as_view(), name='admin_confirm_payment'),
    path('api/admin/orders/<int:pk>/approve-sale/', AdminSaleApproveView.as_view(), name='admin_approve_sale'),
    path('api/admin/orders/<int:pk>/reject-sale/', AdminSaleRejectView.as_view(), name='admin_reject_sale'),
    path('api/admin/bicycles/<int:pk>/approve/', AdminBicycleApproveView.as_view(), name='admin_approve_bicycle'),

    # JWT Authentication endpoints
    path('api/token/', TokenObtainPairView.as_view(), name='token_obtain_pair'),
    path('api/token/refresh/', TokenRefreshView.as_view(), name='token_refresh'),
]

"""
URL configuration for storefront_backend project.

Store-scoped APIs live under ``api/stores/<slug>/``; provider callbacks
under ``webhooks/``.
"""
from django.urls import include, path

store_patterns = [
    path('', include('pagebuilder.urls')),
    path('', include('products.urls')),
    path('', include('orders.urls')),
]

urlpatterns = [
    path('api/stores/<slug:slug>/', include(store_patterns)),
    path('webhooks/', include('payments.urls')),
    path('webhooks/', include('shipping.urls')),
]

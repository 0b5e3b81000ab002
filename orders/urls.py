from django.urls import path
from . import views

urlpatterns = [
    path('cart/', views.create_cart, name='create-cart'),
    path('cart/<uuid:cart_id>/', views.cart_detail, name='cart-detail'),
    path('cart/<uuid:cart_id>/items/', views.add_cart_item, name='add-cart-item'),
    path('cart/<uuid:cart_id>/items/<int:item_id>/', views.cart_item_detail, name='cart-item-detail'),
    path('checkout/', views.checkout, name='checkout'),
    path('orders/<str:order_number>/pay/', views.pay_order, name='pay-order'),
    path('orders/<str:order_number>/verify/', views.verify_order_payment, name='verify-order-payment'),
    path('orders/<str:order_number>/cancel-payment/', views.cancel_order_payment, name='cancel-order-payment'),
    path('coupons/validate/', views.validate_coupon_code, name='validate-coupon'),
]

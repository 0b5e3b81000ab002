from django.urls import path
from . import views

urlpatterns = [
    path('layout/', views.homepage_layout, name='homepage-layout'),
    path('layout/operations/', views.apply_layout_operations, name='layout-operations'),
    path('home/', views.storefront_home, name='storefront-home'),
]

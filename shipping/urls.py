from django.urls import path
from . import views

urlpatterns = [
    path('shiprocket/', views.shiprocket_webhook, name='shiprocket-webhook'),
]

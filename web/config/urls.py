from django.urls import include, path

urlpatterns = [
    path("api/orders/", include("apps.orders.urls")),
    path("api/payments/", include("apps.payments.urls")),
    path("", include("apps.monitoring.urls")),
]

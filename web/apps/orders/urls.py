from django.urls import path

from .views import (
    AdvanceOrderStatusView,
    CancelOrderView,
    OrdersCollectionView,
    RetrieveOrderView,
    TrackOrderView,
)

app_name = "orders"

urlpatterns = [
    path("", OrdersCollectionView.as_view(), name="orders-collection"),  # GET list / POST create
    path("tracking/<str:order_number>/", TrackOrderView.as_view(), name="orders-tracking"),
    path("<uuid:oid>/", RetrieveOrderView.as_view(), name="orders-detail"),
    path("<uuid:oid>/cancel/", CancelOrderView.as_view(), name="orders-cancel"),
    path("<uuid:oid>/status/", AdvanceOrderStatusView.as_view(), name="orders-status"),
]

from django.urls import path

from .views import MpesaCallbackView, StkPushView

app_name = "payments"

# no trailing slash: the callback URL is registered with the provider verbatim
urlpatterns = [
    path("mpesa/stkpush", StkPushView.as_view(), name="mpesa-stkpush"),
    path("mpesa/callback", MpesaCallbackView.as_view(), name="mpesa-callback"),
]

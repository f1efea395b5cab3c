from django.conf import settings

from .config import MpesaConfig
from .mpesa import MpesaClient


def get_mpesa_config() -> MpesaConfig:
    return MpesaConfig.from_settings(settings.MPESA)


def get_mpesa_client() -> MpesaClient:
    """Return an ``MpesaClient`` built from the startup configuration."""
    return MpesaClient(get_mpesa_config())

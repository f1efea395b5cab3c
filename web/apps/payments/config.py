"""M-Pesa (Daraja) configuration object.

Built once from ``settings.MPESA`` and handed to ``MpesaClient``; the
client never looks at the environment itself.
"""

from dataclasses import dataclass
from typing import Mapping

from apps.orders.errors import ConfigurationError

SANDBOX_BASE_URL = "https://sandbox.safaricom.co.ke"
PRODUCTION_BASE_URL = "https://api.safaricom.co.ke"


@dataclass(frozen=True)
class MpesaConfig:
    env: str = "sandbox"
    consumer_key: str = ""
    consumer_secret: str = ""
    short_code: str = ""
    passkey: str = ""
    callback_url: str = ""
    country_code: str = "254"
    timeout_secs: float = 15.0

    @classmethod
    def from_settings(cls, raw: Mapping) -> "MpesaConfig":
        return cls(
            env=(raw.get("ENV") or "sandbox").lower(),
            consumer_key=raw.get("CONSUMER_KEY") or "",
            consumer_secret=raw.get("CONSUMER_SECRET") or "",
            short_code=str(raw.get("SHORT_CODE") or ""),
            passkey=raw.get("PASSKEY") or "",
            callback_url=raw.get("CALLBACK_URL") or "",
            country_code=str(raw.get("COUNTRY_CODE") or "254"),
            timeout_secs=float(raw.get("TIMEOUT_SECS") or 15.0),
        )

    @property
    def is_sandbox(self) -> bool:
        return self.env != "production"

    @property
    def base_url(self) -> str:
        return SANDBOX_BASE_URL if self.is_sandbox else PRODUCTION_BASE_URL

    def missing(self) -> list[str]:
        required = {
            "MPESA_CONSUMER_KEY": self.consumer_key,
            "MPESA_CONSUMER_SECRET": self.consumer_secret,
            "MPESA_SHORT_CODE": self.short_code,
            "MPESA_PASSKEY": self.passkey,
            "MPESA_CALLBACK_URL": self.callback_url,
        }
        return [name for name, value in required.items() if not value]

    def require(self) -> "MpesaConfig":
        """Return self, or raise ``ConfigurationError`` naming what is missing."""
        missing = self.missing()
        if missing:
            raise ConfigurationError("M-Pesa configuration missing", missing=missing)
        return self

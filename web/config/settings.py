"""Django settings for the storefront backend.

All environment variables are read here, once, at process start. Runtime
code reads ``django.conf.settings`` and never touches ``os.environ`` while
serving a request.
"""

import os
from decimal import Decimal
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent  # .../web


def _env_bool(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-insecure-change-me")
DEBUG = _env_bool("DJANGO_DEBUG")
ALLOWED_HOSTS = [h for h in os.getenv("DJANGO_ALLOWED_HOSTS", "*").split(",") if h]

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "rest_framework",
    "rest_framework.authtoken",
    "apps.catalog",
    "apps.orders",
    "apps.payments",
    "apps.monitoring",
]

MIDDLEWARE = [
    "gateway.middleware.RequestIdMiddleware",
    "gateway.middleware.ApiSizeLimitMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
]

ROOT_URLCONF = "config.urls"
WSGI_APPLICATION = "config.wsgi.application"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {"context_processors": []},
    }
]

# ---- Database ----
if os.getenv("DB_ENGINE", "sqlite").lower() == "postgres":
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.getenv("DB_NAME", "storefront"),
            "USER": os.getenv("DB_USER", "storefront"),
            "PASSWORD": os.getenv("DB_PASSWORD", "storefront"),
            "HOST": os.getenv("DB_HOST", "localhost"),
            "PORT": os.getenv("DB_PORT", "5432"),
            "CONN_MAX_AGE": int(os.getenv("DB_CONN_MAX_AGE", "60")),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": os.getenv("DB_NAME", str(BASE_DIR / "db.sqlite3")),
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "storefront",
    }
}

LANGUAGE_CODE = "en-us"
# M-Pesa expects the STK timestamp in East Africa Time
TIME_ZONE = os.getenv("TIME_ZONE", "Africa/Nairobi")
USE_I18N = False
USE_TZ = True

# ---- REST framework ----
REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "gateway.authentication.BearerTokenAuthentication",
        "rest_framework.authentication.SessionAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.IsAuthenticated"],
    "DEFAULT_RENDERER_CLASSES": ["rest_framework.renderers.JSONRenderer"],
    "EXCEPTION_HANDLER": "gateway.exceptions.api_exception_handler",
    "DEFAULT_THROTTLE_RATES": {
        "orders_create": os.getenv("THROTTLE_ORDERS_CREATE", "60/min"),
        "orders_list": os.getenv("THROTTLE_ORDERS_LIST", "300/min"),
        "orders_detail": os.getenv("THROTTLE_ORDERS_DETAIL", "600/min"),
        "orders_tracking": os.getenv("THROTTLE_ORDERS_TRACKING", "120/min"),
        "mpesa_stkpush": os.getenv("THROTTLE_MPESA_STKPUSH", "30/min"),
    },
}

# ---- Pricing ----
ORDER_TAX_RATE = Decimal(os.getenv("ORDER_TAX_RATE", "0.08"))
ORDER_FREE_SHIPPING_THRESHOLD = Decimal(os.getenv("ORDER_FREE_SHIPPING_THRESHOLD", "100"))
ORDER_FLAT_SHIPPING_FEE = Decimal(os.getenv("ORDER_FLAT_SHIPPING_FEE", "10"))

# ---- M-Pesa (Daraja) ----
MPESA = {
    "ENV": os.getenv("MPESA_ENV", "sandbox"),
    "CONSUMER_KEY": os.getenv("MPESA_CONSUMER_KEY", ""),
    "CONSUMER_SECRET": os.getenv("MPESA_CONSUMER_SECRET", ""),
    "SHORT_CODE": os.getenv("MPESA_SHORT_CODE", ""),
    "PASSKEY": os.getenv("MPESA_PASSKEY", ""),
    "CALLBACK_URL": os.getenv("MPESA_CALLBACK_URL", ""),
    "COUNTRY_CODE": os.getenv("MPESA_COUNTRY_CODE", "254"),
    "TIMEOUT_SECS": float(os.getenv("MPESA_TIMEOUT_SECS", "15")),
}
MPESA_TOKEN_RETRY_MAX = int(os.getenv("MPESA_TOKEN_RETRY_MAX", "3"))
MPESA_TOKEN_RETRY_BACKOFF_BASE = float(os.getenv("MPESA_TOKEN_RETRY_BACKOFF_BASE", "0.15"))
MPESA_TOKEN_RETRY_MAX_SLEEP = float(os.getenv("MPESA_TOKEN_RETRY_MAX_SLEEP", "0.5"))
MPESA_CIRCUIT_FAIL_THRESHOLD = int(os.getenv("MPESA_CIRCUIT_FAIL_THRESHOLD", "5"))
MPESA_CIRCUIT_RESET_TIMEOUT = float(os.getenv("MPESA_CIRCUIT_RESET_TIMEOUT", "30"))

# inline | thread | deferred
PAYMENT_CALLBACK_DISPATCH = os.getenv("PAYMENT_CALLBACK_DISPATCH", "thread")
PAYMENT_CALLBACK_MAX_ATTEMPTS = int(os.getenv("PAYMENT_CALLBACK_MAX_ATTEMPTS", "5"))
PAYMENT_CALLBACK_WORKERS = int(os.getenv("PAYMENT_CALLBACK_WORKERS", "2"))

API_MAX_BYTES = int(os.getenv("API_MAX_BYTES", str(1 * 1024 * 1024)))
# the callback view stores oversized deliveries itself and still acknowledges them
API_SIZE_LIMIT_EXEMPT_PATHS = ("/api/payments/mpesa/callback",)

# ---- Logging ----
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "request_id": {"()": "gateway.logging_filters.RequestIdFilter"},
    },
    "formatters": {
        "json": {
            "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
            "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "filters": ["request_id"],
        },
    },
    "loggers": {
        "store": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "django": {"handlers": ["console"], "level": "WARNING", "propagate": False},
    },
    "root": {"handlers": ["console"], "level": "WARNING"},
}

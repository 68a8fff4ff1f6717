"""Django settings for the order settlement web project.

Everything deployment-specific comes from environment variables. Without
``POSTGRES_HOST`` the project runs on a local SQLite file, which is what the
test suite uses.
"""

import os
from pathlib import Path


def env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-only-insecure-key")
DEBUG = env_bool("DJANGO_DEBUG", False)
ALLOWED_HOSTS = os.getenv("DJANGO_ALLOWED_HOSTS", "*").split(",")

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "rest_framework",
    "apps.orders",
]

MIDDLEWARE = [
    "gateway.middleware.RequestIdMiddleware",
    "gateway.middleware.ApiSizeLimitMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "config.urls"
WSGI_APPLICATION = "config.wsgi.application"

if os.getenv("POSTGRES_HOST"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "HOST": os.getenv("POSTGRES_HOST"),
            "PORT": os.getenv("POSTGRES_PORT", "5432"),
            "NAME": os.getenv("POSTGRES_DB", "orders"),
            "USER": os.getenv("POSTGRES_USER", "orders_user"),
            "PASSWORD": os.getenv("POSTGRES_PASSWORD", "orders-pass"),
            "CONN_MAX_AGE": int(os.getenv("POSTGRES_CONN_MAX_AGE", "60")),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"
USE_TZ = True
TIME_ZONE = "UTC"

CACHES = {"default": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache"}}

REST_FRAMEWORK = {
    "DEFAULT_RENDERER_CLASSES": ["rest_framework.renderers.JSONRenderer"],
    "DEFAULT_PARSER_CLASSES": ["rest_framework.parsers.JSONParser"],
    # Authentication happens at the edge gateway, not in this service.
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.AllowAny"],
    "UNAUTHENTICATED_USER": None,
    "DEFAULT_THROTTLE_RATES": {
        "orders_list": os.getenv("THROTTLE_ORDERS_LIST", "600/min"),
        "orders_create": os.getenv("THROTTLE_ORDERS_CREATE", "300/min"),
        "orders_detail": os.getenv("THROTTLE_ORDERS_DETAIL", "1200/min"),
    },
}

API_MAX_BYTES = int(os.getenv("API_MAX_BYTES", str(1 * 1024 * 1024)))

# ---- Ledger services ----
USE_HTTP_ADAPTERS = env_bool("USE_HTTP_ADAPTERS", True)
INVENTORY_BASE_URL = os.getenv("INVENTORY_BASE_URL", "http://inventory:9001")
REWARDS_BASE_URL = os.getenv("REWARDS_BASE_URL", "http://rewards:9002")
INVENTORY_ALLOW_NEGATIVE_STOCK = env_bool("INVENTORY_ALLOW_NEGATIVE_STOCK", False)

HTTP_TIMEOUT_SECS = float(os.getenv("HTTP_TIMEOUT_SECS", "2.0"))
HTTP_RETRY_MAX = int(os.getenv("HTTP_RETRY_MAX", "2"))
HTTP_RETRY_BACKOFF_BASE = float(os.getenv("HTTP_RETRY_BACKOFF_BASE", "0.15"))
HTTP_RETRY_MAX_SLEEP = float(os.getenv("HTTP_RETRY_MAX_SLEEP", "0.5"))
HTTP_CIRCUIT_FAIL_THRESHOLD = int(os.getenv("HTTP_CIRCUIT_FAIL_THRESHOLD", "5"))
HTTP_CIRCUIT_RESET_TIMEOUT = float(os.getenv("HTTP_CIRCUIT_RESET_TIMEOUT", "30"))
HEALTH_TIMEOUT_SECS = float(os.getenv("HEALTH_TIMEOUT_SECS", "1.0"))

# ---- Settlement policy ----
ORDERS_PLATFORM_FEE_RATE = os.getenv("ORDERS_PLATFORM_FEE_RATE", "0.05")
ORDERS_MINOR_UNITS_PER_POINT = int(os.getenv("ORDERS_MINOR_UNITS_PER_POINT", "100"))
ORDERS_RETURN_WINDOW_HOURS = float(os.getenv("ORDERS_RETURN_WINDOW_HOURS", "24"))
ORDERS_REFUND_POLICY = os.getenv("ORDERS_REFUND_POLICY", "full_total")
ORDERS_RESTOCK_ON_RETURN = env_bool("ORDERS_RESTOCK_ON_RETURN", True)
ORDERS_REVERSE_POINTS_ON_REFUND = env_bool("ORDERS_REVERSE_POINTS_ON_REFUND", False)

# ---- Logging ----
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "request_context": {"()": "gateway.logging_filters.RequestContextFilter"},
    },
    "formatters": {
        "json": {
            "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
            "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s %(order_id)s %(event)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "filters": ["request_context"],
        },
    },
    "root": {"handlers": ["console"], "level": LOG_LEVEL},
    "loggers": {
        "orders": {"level": LOG_LEVEL, "propagate": True},
        "django.request": {"level": "WARNING", "propagate": True},
    },
}

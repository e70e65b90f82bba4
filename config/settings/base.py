"""
Django settings for the usage billing core - Base Configuration
"""

import os
from pathlib import Path

# ===============================================================================
# CORE DJANGO SETTINGS
# ===============================================================================

BASE_DIR = Path(__file__).resolve().parent.parent.parent

# Application definition
DJANGO_APPS: list[str] = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
]

THIRD_PARTY_APPS: list[str] = [
    "django_q",
]

LOCAL_APPS: list[str] = [
    "apps.common",
    "apps.customers",
    "apps.billing",
]

INSTALLED_APPS = DJANGO_APPS + THIRD_PARTY_APPS + LOCAL_APPS

MIDDLEWARE: list[str] = []

# ===============================================================================
# DATABASE
# ===============================================================================

DATABASES = {
    "default": {
        "ENGINE": os.environ.get("DB_ENGINE", "django.db.backends.sqlite3"),
        "NAME": os.environ.get("DB_NAME", str(BASE_DIR / "db.sqlite3")),
        "USER": os.environ.get("DB_USER", ""),
        "PASSWORD": os.environ.get("DB_PASSWORD", ""),
        "HOST": os.environ.get("DB_HOST", ""),
        "PORT": os.environ.get("DB_PORT", ""),
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# ===============================================================================
# INTERNATIONALIZATION
# ===============================================================================

LANGUAGE_CODE = "en"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

# ===============================================================================
# SECURITY
# ===============================================================================

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "🚨 SECURITY WARNING: Using default SECRET_KEY. Set DJANGO_SECRET_KEY environment variable for production!",
        UserWarning,
        stacklevel=2,
    )
    SECRET_KEY = "django-insecure-dev-key-only-change-in-production-or-tests"  # noqa: S105

DEBUG = False
ALLOWED_HOSTS: list[str] = []

# ===============================================================================
# BILLING CONFIGURATION 💳
# ===============================================================================

BILLING_DEFAULT_CURRENCY = os.environ.get("BILLING_DEFAULT_CURRENCY", "USD")
BILLING_MONEY_DECIMAL_PLACES = int(os.environ.get("BILLING_MONEY_DECIMAL_PLACES", "2"))
BILLING_EVENT_DISPATCH_BATCH_SIZE = int(os.environ.get("BILLING_EVENT_DISPATCH_BATCH_SIZE", "100"))
BILLING_EVENT_MAX_ATTEMPTS = int(os.environ.get("BILLING_EVENT_MAX_ATTEMPTS", "5"))
BILLING_DISPATCH_EVENTS_ASYNC = os.environ.get("BILLING_DISPATCH_EVENTS_ASYNC", "true").lower() == "true"

# ===============================================================================
# DJANGO-Q2 TASK QUEUE
# ===============================================================================

Q_CLUSTER_BASE = {
    "name": "billing-cluster",
    "timeout": 300,  # 5 minutes
    "retry": 600,  # 10 minutes retry delay
    "save_limit": 1000,  # Keep last 1000 task results
    "catch_up": False,  # Don't run missed scheduled tasks
    "orm": "default",  # Use the Django database as broker
    "bulk": 10,
    "queue_limit": 100,
}

# Default production configuration (overridden in environment-specific settings)
Q_CLUSTER = {
    **Q_CLUSTER_BASE,
    "workers": 2,
    "recycle": 500,  # Restart workers after 500 tasks
    "sync": False,
}

# ===============================================================================
# LOGGING (production default, plain text)
# ===============================================================================

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{asctime} {levelname:<8} {name} {message} [{request_id}] [sub={subscription_id}]",
            "style": "{",
        },
    },
    "filters": {
        "billing_context": {
            "()": "apps.common.logging.BillingContextFilter",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
            "filters": ["billing_context"],
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "INFO",
    },
    "loggers": {
        "apps.security": {
            "handlers": ["console"],
            "level": "WARNING",
            "propagate": False,
        },
    },
}

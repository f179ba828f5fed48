"""
Django settings for the creatorhub project.

Values are read from the environment, with a ``.env`` file beside the
project root loaded first for local development.
"""
import os
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

env_path = BASE_DIR.parent / ".env"
load_dotenv(env_path)


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "django-insecure-local-development-key")
DEBUG = _env_bool("DJANGO_DEBUG", True)
ALLOWED_HOSTS = [host for host in os.getenv("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if host]

# Deployment environment; "production" disables the in-memory payout provider.
APP_ENV = os.getenv("APP_ENV", "development").lower()

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "django_filters",
    "accounts",
    "monetization",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "creatorhub.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

ASGI_APPLICATION = "creatorhub.asgi.application"

# Row locks in the ledger need PostgreSQL in production; SQLite serves local runs and tests.
if os.getenv("POSTGRES_DB"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.getenv("POSTGRES_DB"),
            "USER": os.getenv("POSTGRES_USER", "postgres"),
            "PASSWORD": os.getenv("POSTGRES_PASSWORD", ""),
            "HOST": os.getenv("POSTGRES_HOST", "localhost"),
            "PORT": os.getenv("POSTGRES_PORT", "5432"),
            "ATOMIC_REQUESTS": False,
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }

AUTH_USER_MODEL = "accounts.User"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
]

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
        "rest_framework.authentication.BasicAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAuthenticated",
    ],
    "DEFAULT_FILTER_BACKENDS": [
        "django_filters.rest_framework.DjangoFilterBackend",
        "rest_framework.filters.OrderingFilter",
    ],
}

# Celery
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/1")
CELERY_TASK_ALWAYS_EAGER = _env_bool("CELERY_TASK_ALWAYS_EAGER", False)

# Subscription billing
SUBSCRIPTION_PERIOD_DAYS = int(os.getenv("SUBSCRIPTION_PERIOD_DAYS", "30"))
SUBSCRIPTION_MAX_FAILED_RENEWALS = int(os.getenv("SUBSCRIPTION_MAX_FAILED_RENEWALS", "3"))
SUBSCRIPTION_RENEWAL_BATCH_SIZE = int(os.getenv("SUBSCRIPTION_RENEWAL_BATCH_SIZE", "10"))
SUBSCRIPTION_RENEWAL_MAX_WORKERS = int(os.getenv("SUBSCRIPTION_RENEWAL_MAX_WORKERS", "10"))
SUBSCRIPTION_DEFAULT_TIER = {
    "name": "Subscriber",
    "tier": 1,
    "description": "",
    "price_per_month": 50,
    "benefits": ["Exclusive content access", "Subscriber badge"],
}

# Payout settlement. 10 coins = 1 USD.
PAYOUT_COIN_TO_USD_RATE = Decimal(os.getenv("PAYOUT_COIN_TO_USD_RATE", "0.10"))
PAYOUT_MINIMUM_COINS = int(os.getenv("PAYOUT_MINIMUM_COINS", "100"))
PAYEE_STATUS_SYNC_INTERVAL_SECONDS = int(os.getenv("PAYEE_STATUS_SYNC_INTERVAL_SECONDS", "300"))
PAYOUT_REGISTRATION_REDIRECT_URL = os.getenv(
    "PAYOUT_REGISTRATION_REDIRECT_URL",
    "http://localhost:3000/creator/earnings?payee=connected",
)

PAYOUT_PROVIDER_API_URL = os.getenv("PAYOUT_PROVIDER_API_URL", "https://api.sandbox.payoneer.com/v4")
PAYOUT_PROVIDER_PROGRAM_ID = os.getenv("PAYOUT_PROVIDER_PROGRAM_ID", "")
PAYOUT_PROVIDER_USERNAME = os.getenv("PAYOUT_PROVIDER_USERNAME", "")
PAYOUT_PROVIDER_PASSWORD = os.getenv("PAYOUT_PROVIDER_PASSWORD", "")
PAYOUT_PROVIDER_WEBHOOK_SECRET = os.getenv("PAYOUT_PROVIDER_WEBHOOK_SECRET", "")
PAYOUT_PROVIDER_TIMEOUT_SECONDS = float(os.getenv("PAYOUT_PROVIDER_TIMEOUT_SECONDS", "15"))
PAYOUT_PROVIDER_MOCK_MODE = _env_bool("PAYOUT_PROVIDER_MOCK_MODE", True)

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": os.getenv("DJANGO_LOG_LEVEL", "INFO"),
    },
    "loggers": {
        "monetization": {
            "level": os.getenv("MONETIZATION_LOG_LEVEL", "INFO"),
        },
    },
}

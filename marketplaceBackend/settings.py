"""
Django settings for marketplaceBackend project.

Only the pieces the order/inventory/review core needs are configured here:
database, cache, the custom user model, logging and the MARKETPLACE block.
Everything is environment driven so the same file works locally and in
deployment.
"""

import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name, default=False):
    return os.environ.get(name, str(default)).lower() in ("1", "true", "yes", "on")


SECRET_KEY = os.environ.get("SECRET_KEY")
if not SECRET_KEY:
    raise RuntimeError("SECRET_KEY environment variable is required")

DEBUG = _env_bool("DEBUG", False)

ALLOWED_HOSTS = [host for host in os.environ.get("ALLOWED_HOSTS", "localhost,127.0.0.1").split(",") if host]

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "authentication",
    "marketplace",
]

AUTH_USER_MODEL = "authentication.CustomUser"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# Database
DB_ENGINE = os.environ.get("DB_ENGINE", "django.db.backends.sqlite3")

if DB_ENGINE.endswith("sqlite3"):
    DATABASES = {
        "default": {
            "ENGINE": DB_ENGINE,
            "NAME": os.environ.get("DB_NAME", BASE_DIR / "db.sqlite3"),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": DB_ENGINE,
            "NAME": os.environ.get("DB_NAME", "marketplace"),
            "USER": os.environ.get("DB_USER", ""),
            "PASSWORD": os.environ.get("DB_PASSWORD", ""),
            "HOST": os.environ.get("DB_HOST", "localhost"),
            "PORT": os.environ.get("DB_PORT", ""),
            "ATOMIC_REQUESTS": False,
            "CONN_MAX_AGE": int(os.environ.get("DB_CONN_MAX_AGE", "60")),
        }
    }

# Cache (read-through layer used by the query services)
REDIS_CACHE_URL = os.environ.get("REDIS_CACHE_URL")

if REDIS_CACHE_URL:
    CACHES = {
        "default": {
            "BACKEND": "django.core.cache.backends.redis.RedisCache",
            "LOCATION": REDIS_CACHE_URL,
            "KEY_PREFIX": "marketplace",
        }
    }
else:
    CACHES = {
        "default": {
            "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
            "LOCATION": "marketplace-default",
        }
    }

USE_TZ = True
TIME_ZONE = "UTC"

# Marketplace core configuration
MARKETPLACE = {
    "DEFAULT_CURRENCY": os.environ.get("MARKETPLACE_DEFAULT_CURRENCY", "EUR"),
    "CONFLICT_RETRIES": int(os.environ.get("MARKETPLACE_CONFLICT_RETRIES", "3")),
    "CONFLICT_RETRY_DELAY": float(os.environ.get("MARKETPLACE_CONFLICT_RETRY_DELAY", "0.05")),
    "CACHE_TIMEOUT": int(os.environ.get("MARKETPLACE_CACHE_TIMEOUT", "600")),
    "SELLER_RATING_CACHE_TIMEOUT": int(os.environ.get("MARKETPLACE_SELLER_RATING_CACHE_TIMEOUT", "3600")),
}

# Tracing
TRACING_ENABLED = _env_bool("TRACING_ENABLED", False)
TRACING_SERVICE_NAME = os.environ.get("TRACING_SERVICE_NAME", "marketplace-core")

# Logging
LOG_LEVEL = os.environ.get("DJANGO_LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{asctime} [{levelname}] {name}: {message}",
            "style": "{",
        },
        "simple": {
            "format": "[{levelname}] {message}",
            "style": "{",
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
        "level": "WARNING",
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": "WARNING",
            "propagate": False,
        },
        "marketplace": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
        "utils": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
    },
}

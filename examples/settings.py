"""Django settings for the example development server.

Extends the test settings pattern with a persistent SQLite database,
console email and DEBUG mode for local development. Secrets
come from an optional ``.env`` file next to this module.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent
load_dotenv(BASE_DIR / ".env")

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "example-dev-key-not-for-production")
SALT_KEY = os.environ.get("DJANGO_SALT_KEY", "example-salt-key-not-for-production")
DEBUG = True
ALLOWED_HOSTS = ["*"]

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.messages",
    "django.contrib.sessions",
    "django.contrib.staticfiles",
    "tradeconnect.events",
    "tradeconnect.promotions",
    "tradeconnect.registration",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
]

ROOT_URLCONF = "urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": BASE_DIR / "db.sqlite3",
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"
USE_TZ = True
TIME_ZONE = "America/Guatemala"

STATIC_URL = "static/"

EMAIL_BACKEND = "django.core.mail.backends.console.EmailBackend"

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "handlers": {"console": {"class": "logging.StreamHandler"}},
    "loggers": {"tradeconnect": {"handlers": ["console"], "level": os.environ.get("TRADECONNECT_LOG_LEVEL", "INFO")}},
}

TRADECONNECT = {
    "stripe": {
        "secret_key": os.environ.get("STRIPE_SECRET_KEY") or None,
        "publishable_key": os.environ.get("STRIPE_PUBLISHABLE_KEY") or None,
    },
    "fel": {
        "base_url": os.environ.get("FEL_BASE_URL", "https://certificador.feel.com.gt/fel"),
        "token": os.environ.get("FEL_TOKEN") or None,
        "nit_emisor": os.environ.get("FEL_NIT_EMISOR", ""),
    },
    "notifications": {
        "from_email": os.environ.get("TRADECONNECT_FROM_EMAIL", "no-reply@tradeconnect.gt"),
    },
}

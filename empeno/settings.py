# empeno/settings.py

"""
Django settings for the empeño loan backend.

Everything environment-specific is read from environment variables so the
same module serves development, CI and production.
"""

import os
import sys
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

# Django apps live under apps/ and are imported by their short names
# (e.g. `from core.utils import format_money`)
APPS_DIR = BASE_DIR / 'apps'
if str(APPS_DIR) not in sys.path:
    sys.path.insert(0, str(APPS_DIR))


def env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def env_list(name, default=''):
    return [item.strip() for item in os.environ.get(name, default).split(',') if item.strip()]


# =============================================================================
# CORE
# =============================================================================

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'django-insecure-change-me-in-production')

DEBUG = env_bool('DJANGO_DEBUG', default=False)

ALLOWED_HOSTS = env_list('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1')

INSTALLED_APPS = [
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',

    # Project apps
    'core',
    'loans.apps.LoansConfig',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    # JSON POSTs send the token from /loans/csrf/ in the X-CSRFToken header
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
]

ROOT_URLCONF = 'empeno.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'empeno.wsgi.application'


# =============================================================================
# DATABASE
# =============================================================================

DATABASES = {
    'default': {
        'ENGINE': os.environ.get('DB_ENGINE', 'django.db.backends.sqlite3'),
        'NAME': os.environ.get('DB_NAME', str(BASE_DIR / 'db.sqlite3')),
        'USER': os.environ.get('DB_USER', ''),
        'PASSWORD': os.environ.get('DB_PASSWORD', ''),
        'HOST': os.environ.get('DB_HOST', ''),
        'PORT': os.environ.get('DB_PORT', ''),
        'ATOMIC_REQUESTS': False,
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


# =============================================================================
# INTERNATIONALIZATION
# =============================================================================

LANGUAGE_CODE = 'es'

TIME_ZONE = os.environ.get('DJANGO_TIME_ZONE', 'America/Guayaquil')

USE_I18N = True

USE_TZ = True

LOGIN_URL = '/accounts/login/'


# =============================================================================
# LOAN ENGINE
# =============================================================================

# Business parameters of the accrual calculator. The defaults must stay as
# they are: existing contracts were issued with these figures.
LOAN_ENGINE = {
    'CURRENCY': os.environ.get('LOAN_CURRENCY', 'USD'),
    'DAILY_INTEREST_RATE': os.environ.get('LOAN_DAILY_INTEREST_RATE', '0.0005'),
    'DAILY_MORA_RATE': os.environ.get('LOAN_DAILY_MORA_RATE', '0.0010'),
    'GRACE_PERIOD_DAYS': int(os.environ.get('LOAN_GRACE_PERIOD_DAYS', '3')),
    'DAILY_MODE_MAX_DAYS': 30,
    'MORA_DEFAULT_DAYS': int(os.environ.get('LOAN_MORA_DEFAULT_DAYS', '30')),
    'COMPANY_SIGNER_ROLES': ['ADMINISTRADOR', 'VALUADOR'],
    'PAYMENT_VALIDATOR_ROLES': ['ADMINISTRADOR', 'CAJERO', 'SUPERVISOR'],
    'LOAN_ADMIN_ROLES': ['ADMINISTRADOR'],
}

# Certificate-backed contract signing. Both paths must be set for
# cryptographic signatures to be available.
CONTRACT_SIGNING = {
    'CERTIFICATE_PATH': os.environ.get('CONTRACT_SIGNING_CERT', ''),
    'PRIVATE_KEY_PATH': os.environ.get('CONTRACT_SIGNING_KEY', ''),
    'PRIVATE_KEY_PASSWORD': os.environ.get('CONTRACT_SIGNING_KEY_PASSWORD', ''),
}


# =============================================================================
# LOGGING
# =============================================================================

LOG_LEVEL = os.environ.get('DJANGO_LOG_LEVEL', 'INFO')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': LOG_LEVEL,
    },
    'loggers': {
        'django.db.backends': {
            'handlers': ['console'],
            'level': 'WARNING',
            'propagate': False,
        },
        'loans': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        },
    },
}

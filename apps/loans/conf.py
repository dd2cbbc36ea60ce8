# loans/conf.py

"""
Loan engine configuration.

Reads the LOAN_ENGINE and CONTRACT_SIGNING settings, filling in defaults.
Rates are returned as Decimal so they never pass through float.
"""

from django.conf import settings
from decimal import Decimal

DEFAULTS = {
    'CURRENCY': 'USD',
    'DAILY_INTEREST_RATE': Decimal('0.0005'),
    'DAILY_MORA_RATE': Decimal('0.0010'),
    'GRACE_PERIOD_DAYS': 3,
    'DAILY_MODE_MAX_DAYS': 30,
    'MORA_DEFAULT_DAYS': 30,
    'COMPANY_SIGNER_ROLES': ['ADMINISTRADOR', 'VALUADOR'],
    'PAYMENT_VALIDATOR_ROLES': ['ADMINISTRADOR', 'CAJERO', 'SUPERVISOR'],
    'LOAN_ADMIN_ROLES': ['ADMINISTRADOR'],
}

DECIMAL_KEYS = {'DAILY_INTEREST_RATE', 'DAILY_MORA_RATE'}
INT_KEYS = {'GRACE_PERIOD_DAYS', 'DAILY_MODE_MAX_DAYS', 'MORA_DEFAULT_DAYS'}


def get_engine_setting(key):
    """
    Get a loan engine setting with its default.

    Args:
        key (str): Setting name, e.g. 'DAILY_INTEREST_RATE'

    Returns:
        Decimal for rates, int for day counts, the raw value otherwise
    """
    if key not in DEFAULTS:
        raise KeyError(f"Unknown loan engine setting: {key}")

    configured = getattr(settings, 'LOAN_ENGINE', None) or {}
    value = configured.get(key, DEFAULTS[key])

    if key in DECIMAL_KEYS:
        return Decimal(str(value))
    if key in INT_KEYS:
        return int(value)
    return value


def get_accrual_rates():
    """
    Get the rate set used by the accrual calculator.

    Returns:
        dict: daily_interest_rate, daily_mora_rate, grace_period_days
    """
    return {
        'daily_interest_rate': get_engine_setting('DAILY_INTEREST_RATE'),
        'daily_mora_rate': get_engine_setting('DAILY_MORA_RATE'),
        'grace_period_days': get_engine_setting('GRACE_PERIOD_DAYS'),
    }


def get_signing_config():
    """
    Get certificate and key paths for cryptographic contract signing.

    Returns:
        dict or None: None when signing is not configured
    """
    signing = getattr(settings, 'CONTRACT_SIGNING', None) or {}
    cert_path = signing.get('CERTIFICATE_PATH')
    key_path = signing.get('PRIVATE_KEY_PATH')

    if not cert_path or not key_path:
        return None

    return {
        'certificate_path': cert_path,
        'private_key_path': key_path,
        'private_key_password': signing.get('PRIVATE_KEY_PASSWORD') or None,
    }

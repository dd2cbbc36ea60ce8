# core/utils.py

"""
Central utilities for loan operations
Prevents code duplication and ensures consistency
"""
from django.conf import settings
from django.http import JsonResponse
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
import json
import logging

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')
ZERO = Decimal('0.00')


# =============================================================================
# CURRENCY & MONEY FORMATTING
# =============================================================================

def get_base_currency():
    """
    Get base currency from the loan engine configuration.

    Returns:
        str: Currency code (defaults to 'USD')
    """
    engine = getattr(settings, 'LOAN_ENGINE', {}) or {}
    return engine.get('CURRENCY') or 'USD'


def to_decimal(value):
    """
    Convert a number or numeric string to Decimal without going through float.

    Raises:
        InvalidOperation: If the value is not numeric
    """
    if isinstance(value, Decimal):
        return value
    if value is None:
        raise InvalidOperation("Cannot convert None to Decimal")
    return Decimal(str(value).strip())


def round_money(amount):
    """Round to 2 decimal places using round-half-up"""
    return to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(amount, include_symbol=True):
    """
    Format money amount for display.

    Args:
        amount: Decimal or numeric value to format
        include_symbol: Whether to include currency code

    Returns:
        str: Formatted money string
    """
    currency = get_base_currency()
    try:
        formatted = f"{round_money(amount or 0):,.2f}"
    except (InvalidOperation, ValueError, TypeError):
        formatted = "0.00"
    return f"{currency} {formatted}" if include_symbol else formatted


def money_str(amount):
    """Serialize a money value for JSON (string keeps Decimal precision)"""
    if amount is None:
        return None
    return str(round_money(amount))


# =============================================================================
# REQUEST PARSING
# =============================================================================

def parse_request_data(request):
    """
    Extract a flat dict of input values from a JSON or form-encoded body.

    Returns:
        dict: Parsed values (empty dict for an empty body)

    Raises:
        ValueError: If a JSON body cannot be decoded
    """
    content_type = request.META.get('CONTENT_TYPE', '')
    if content_type.startswith('application/json'):
        if not request.body:
            return {}
        try:
            data = json.loads(request.body)
        except json.JSONDecodeError as e:
            raise ValueError(f"Malformed JSON body: {e}") from e
        if not isinstance(data, dict):
            raise ValueError("JSON body must be an object")
        return data
    return request.POST.dict()


def parse_filters(request, filter_keys):
    """
    Extract filter values from request.GET.

    Args:
        request: HTTP request object
        filter_keys: list of filter names to extract

    Returns:
        dict: {key: value or None}
    """
    filters = {}
    for key in filter_keys:
        value = request.GET.get(key, '').strip()
        filters[key] = value if value else None
    return filters


# =============================================================================
# JSON RESPONSES
# =============================================================================

def create_json_response(payload, status=200):
    """Standard JSON success response"""
    return JsonResponse(payload, status=status)


def create_error_response(message, code='error', status=400, retryable=False, errors=None):
    """
    Standard JSON error response.

    The frontend reads `detail` for the message; `code` is stable and
    machine-readable; `retryable` tells the caller whether trying again
    can change the outcome.
    """
    payload = {
        'detail': message,
        'code': code,
        'retryable': retryable,
    }
    if errors:
        payload['errors'] = errors
    return JsonResponse(payload, status=status)


def create_form_error_response(form):
    """Error response for an invalid Django form"""
    errors = {field: [str(e) for e in errs] for field, errs in form.errors.items()}
    first = next(iter(errors.values()), ['Invalid input'])[0]
    return create_error_response(first, code='invalid_input', status=400, errors=errors)

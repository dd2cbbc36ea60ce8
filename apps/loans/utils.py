# loans/utils.py

"""
Loans Utility Functions

Pure utility functions with NO side effects (no database writes):
- Date utilities (days and months between dates)
- Accrual calculator (daily and monthly amortization modes)
- Mora accrual
- Loan lifecycle classification
- Contract content hashing

All functions are pure - they calculate and return values without modifying the database.
Database writes are handled by services.py.
"""

from decimal import Decimal
from dateutil.relativedelta import relativedelta
import hashlib
import json
import logging

from core.utils import round_money, to_decimal

from .choices import AccrualMode, LoanStatus, SignatureState
from .conf import get_accrual_rates, get_engine_setting
from .exceptions import InvalidAmount, InvalidDateRange

logger = logging.getLogger(__name__)

ONE = Decimal('1')
DAYS_PER_MONTH = 30

SIGNED_STATES = (SignatureState.FULLY_SIGNED, SignatureState.CRYPTO_SIGNED)


# =============================================================================
# DATE UTILITIES
# =============================================================================

def calculate_days_between(start_date, end_date):
    """
    Calculate number of calendar days between two dates.

    Args:
        start_date (date): Start date
        end_date (date): End date

    Returns:
        int: Number of days (negative if end_date is before start_date)
    """
    return (end_date - start_date).days


def calculate_months_between(start_date, end_date):
    """
    Number of months between two dates, counting a partial month as a whole one.

    Example:
        >>> calculate_months_between(date(2025, 1, 1), date(2025, 4, 1))
        3
        >>> calculate_months_between(date(2025, 1, 1), date(2025, 3, 31))
        3
    """
    delta = relativedelta(end_date, start_date)
    months = delta.years * 12 + delta.months
    if delta.days > 0:
        months += 1
    return months


# =============================================================================
# ACCRUAL CALCULATOR
# =============================================================================

def calculate_accrual(principal, start_date, due_date, rates=None):
    """
    Estimate interest, installment and mora for a loan term.

    Short terms (under 30 days) are priced per diem; longer terms are
    amortized as fixed monthly installments using the monthly equivalent
    of the daily rate.

    Args:
        principal (Decimal): Loan principal, >= 0
        start_date (date): Loan start date
        due_date (date): Loan due date, strictly after start_date
        rates (dict, optional): Overrides for daily_interest_rate,
            daily_mora_rate and grace_period_days

    Returns:
        dict: {
            'mode': AccrualMode,
            'term_days': int,
            'n_installments': int,         # 0 in daily mode
            'daily_interest_rate': Decimal,
            'daily_mora_rate': Decimal,
            'grace_period_days': int,
            'suggested_installment': Decimal,
            'interest_total': Decimal,
            'mora_estimate': Decimal,
            'fixed_installment': Decimal,  # monthly mode only
        }

    Raises:
        InvalidDateRange: If due_date <= start_date
        InvalidAmount: If principal is negative

    Example:
        >>> calculate_accrual(Decimal('1000.00'), date(2025, 1, 1), date(2025, 1, 11))['interest_total']
        Decimal('5.00')
    """
    if due_date <= start_date:
        raise InvalidDateRange(f"Due date {due_date} must be after start date {start_date}")

    p = to_decimal(principal)
    if p < 0:
        raise InvalidAmount(f"Principal cannot be negative: {principal}")

    config = get_accrual_rates()
    if rates:
        config.update(rates)

    daily_rate = to_decimal(config['daily_interest_rate'])
    mora_rate = to_decimal(config['daily_mora_rate'])
    grace_days = max(0, int(config['grace_period_days']))

    term_days = max(1, calculate_days_between(start_date, due_date))
    mora_estimate = p * mora_rate * grace_days

    result = {
        'term_days': term_days,
        'daily_interest_rate': daily_rate,
        'daily_mora_rate': mora_rate,
        'grace_period_days': grace_days,
        'mora_estimate': round_money(mora_estimate),
    }

    if term_days < get_engine_setting('DAILY_MODE_MAX_DAYS'):
        interest = p * daily_rate * term_days
        average_installment = (p + interest) / term_days

        result.update({
            'mode': AccrualMode.DAILY,
            'n_installments': 0,
            'suggested_installment': round_money(average_installment),
            'interest_total': round_money(interest),
        })
    else:
        n = max(1, calculate_months_between(start_date, due_date))
        monthly_rate = (ONE + daily_rate) ** DAYS_PER_MONTH - ONE

        if monthly_rate == 0:
            installment = p / n
        else:
            installment = p * monthly_rate / (ONE - (ONE + monthly_rate) ** (-n))

        interest_total = installment * n - p

        result.update({
            'mode': AccrualMode.MONTHLY,
            'n_installments': n,
            'suggested_installment': round_money(installment),
            'interest_total': round_money(interest_total),
            'fixed_installment': round_money(installment),
        })

    logger.debug(
        f"Accrual for {p} from {start_date} to {due_date}: "
        f"mode={result['mode']} interest={result['interest_total']}"
    )
    return result


def calculate_mora_accrued(principal, due_date, as_of, rates=None):
    """
    Calculate mora actually accrued on a loan as of a date.

    Mora starts after the grace period that follows the due date:
    Mora = Principal x Daily Mora Rate x max(0, days past due - grace days)

    Args:
        principal (Decimal): Loan principal
        due_date (date): Loan due date
        as_of (date): Calculation date
        rates (dict, optional): Overrides for daily_mora_rate and grace_period_days

    Returns:
        Decimal: Accrued mora, rounded half-up to cents
    """
    config = get_accrual_rates()
    if rates:
        config.update(rates)

    days_past_due = calculate_days_between(due_date, as_of)
    chargeable_days = max(0, days_past_due - int(config['grace_period_days']))

    mora = to_decimal(principal) * to_decimal(config['daily_mora_rate']) * chargeable_days
    return round_money(mora)


def calculate_expected_debt(principal, interest, mora, total_paid):
    """
    Outstanding debt = principal + interest + mora - validated payments, never negative.
    """
    debt = to_decimal(principal) + to_decimal(interest) + to_decimal(mora) - to_decimal(total_paid)
    return round_money(max(debt, Decimal('0')))


# =============================================================================
# LOAN LIFECYCLE
# =============================================================================

def classify_loan_status(debt, due_date, signature_state, today,
                         mora_default_days=None, closed_by_admin=False):
    """
    Derive the display status of a loan.

    Precedence when several conditions hold:
    CLOSED > FULL_DEFAULT > PARTIAL_DEFAULT > AWAITING_SIGNATURES > ACTIVE

    Args:
        debt (Decimal): Current outstanding debt
        due_date (date): Loan due date
        signature_state (SignatureState): Contract signature state
        today (date): Evaluation date
        mora_default_days (int, optional): Days past due before full default
        closed_by_admin (bool): Explicit administrative closure

    Returns:
        LoanStatus: Derived status
    """
    if mora_default_days is None:
        mora_default_days = get_engine_setting('MORA_DEFAULT_DAYS')

    debt = to_decimal(debt)
    days_past_due = calculate_days_between(due_date, today)

    if closed_by_admin or (debt <= 0 and days_past_due > 0):
        return LoanStatus.CLOSED

    if debt > 0 and days_past_due > mora_default_days:
        return LoanStatus.FULL_DEFAULT

    if debt > 0 and days_past_due > 0:
        return LoanStatus.PARTIAL_DEFAULT

    if signature_state not in SIGNED_STATES:
        return LoanStatus.AWAITING_SIGNATURES

    return LoanStatus.ACTIVE


def calculate_days_in_mora(due_date, today):
    """Days past the due date (0 if not yet due)"""
    return max(0, calculate_days_between(due_date, today))


# =============================================================================
# CONTRACT HASHING
# =============================================================================

def build_contract_terms(loan_id, client_id, principal, start_date, due_date, accrual):
    """
    Canonical contract terms used for the content hash.

    Returns:
        dict: JSON-serializable terms
    """
    return {
        'loan_id': str(loan_id),
        'client_id': str(client_id),
        'principal': str(round_money(principal)),
        'start_date': start_date.isoformat(),
        'due_date': due_date.isoformat(),
        'mode': str(accrual['mode']),
        'term_days': accrual['term_days'],
        'n_installments': accrual['n_installments'],
        'daily_interest_rate': str(accrual['daily_interest_rate']),
        'daily_mora_rate': str(accrual['daily_mora_rate']),
        'grace_period_days': accrual['grace_period_days'],
        'suggested_installment': str(accrual['suggested_installment']),
        'interest_total': str(accrual['interest_total']),
        'mora_estimate': str(accrual['mora_estimate']),
    }


def calculate_content_hash(terms, signature=None):
    """
    SHA-256 hex digest of the canonical contract terms.

    When a cryptographic signature is supplied it is folded into the
    digest, so a re-signed contract gets a new hash.

    Returns:
        str: 64-character hex digest
    """
    payload = json.dumps(terms, sort_keys=True, separators=(',', ':')).encode('utf-8')
    digest = hashlib.sha256(payload)
    if signature:
        digest.update(b'|')
        digest.update(signature if isinstance(signature, bytes) else signature.encode('utf-8'))
    return digest.hexdigest()

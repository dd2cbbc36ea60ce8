# loans/stats.py

"""
Statistics utility functions for loans and payments.
Used by the list views and the stats endpoint.
"""

from django.utils import timezone
from django.db.models import Count, Sum, Q
from decimal import Decimal
import logging

from core.utils import format_money, money_str

from .choices import LoanStatus, PaymentStatus, LOAN_STATUS_TO_LEGACY

logger = logging.getLogger(__name__)


# =============================================================================
# LOAN STATISTICS
# =============================================================================

def get_loan_status_summary(filters=None, today=None):
    """
    Count loans by derived status and total their balances.

    The status is recomputed for each loan rather than read from the cached
    column, so loans that fell past due since the last recalculation are
    counted where they belong.

    Args:
        filters (dict): Optional filters
            - client_id: Only this client's loans
        today (date): Evaluation date, defaults to today

    Returns:
        dict: Loan statistics
    """
    from .models import Loan, LoanPayment

    today = today or timezone.localdate()
    loans = Loan.objects.select_related('contract')
    payments = LoanPayment.objects.all()

    if filters and filters.get('client_id'):
        loans = loans.filter(client_id=str(filters['client_id']))
        payments = payments.filter(loan__client_id=str(filters['client_id']))

    by_status = {status: 0 for status in LoanStatus.values}
    for loan in loans:
        by_status[loan.derived_status(today)] += 1

    loan_totals = loans.aggregate(
        total_principal=Sum('principal_amount'),
        total_debt=Sum('debt'),
        total_overpaid=Sum('overpaid_amount'),
        total_paid=Sum('total_paid'),
    )

    payment_totals = payments.aggregate(
        pending_count=Count('id', filter=Q(status=PaymentStatus.PENDING)),
        pending_amount=Sum('amount', filter=Q(status=PaymentStatus.PENDING)),
        validated_count=Count('id', filter=Q(status=PaymentStatus.VALIDATED)),
        rejected_count=Count('id', filter=Q(status=PaymentStatus.REJECTED)),
    )

    total_debt = loan_totals['total_debt'] or Decimal('0.00')

    stats = {
        'total_loans': sum(by_status.values()),
        'by_status': by_status,
        'by_legacy_status': {
            LOAN_STATUS_TO_LEGACY[LoanStatus(status)]: count
            for status, count in by_status.items()
        },
        'in_default': by_status[LoanStatus.PARTIAL_DEFAULT] + by_status[LoanStatus.FULL_DEFAULT],
        'total_principal': money_str(loan_totals['total_principal'] or Decimal('0.00')),
        'total_debt': money_str(total_debt),
        'total_debt_formatted': format_money(total_debt),
        'total_paid': money_str(loan_totals['total_paid'] or Decimal('0.00')),
        'total_overpaid': money_str(loan_totals['total_overpaid'] or Decimal('0.00')),
        'payments': {
            'pending': payment_totals['pending_count'] or 0,
            'pending_amount': money_str(payment_totals['pending_amount'] or Decimal('0.00')),
            'validated': payment_totals['validated_count'] or 0,
            'rejected': payment_totals['rejected_count'] or 0,
        },
    }

    logger.debug(f"Loan status summary: {stats['total_loans']} loans, debt {stats['total_debt']}")
    return stats

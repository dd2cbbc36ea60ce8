"""
test_loans.py - Loan service, recalculation, statistics and management command

Tests:
- Loan creation with contract and interest movement
- Periodic recalculation of mora, debt and status
- Administrative closure
- Loan summary read model
- Status summary statistics
- recalculate_loans command
"""

from datetime import date, timedelta
from decimal import Decimal
from io import StringIO

import pytest
from django.core.management import CommandError, call_command

from loans.choices import LoanStatus, MovementType
from loans.exceptions import InvalidAmount, InvalidDateRange
from loans.models import Loan
from loans.services import LoanService, PaymentService
from loans.stats import get_loan_status_summary
from loans.utils import build_contract_terms, calculate_accrual, calculate_content_hash

pytestmark = pytest.mark.django_db


# ============================================================================
# CREATION
# ============================================================================

class TestCreateLoan:

    def test_daily_loan(self, loan, client_user, admin_context):
        assert loan.principal_amount == Decimal('1000.00')
        assert loan.interest_accrued == Decimal('5.00')
        assert loan.mora_accrued == Decimal('0.00')
        assert loan.debt == Decimal('1005.00')
        assert loan.status == LoanStatus.AWAITING_SIGNATURES
        assert loan.legacy_status == 'pendiente_firma'
        assert loan.client_id == str(client_user.pk)
        assert loan.created_by_id == admin_context.user_id

    def test_monthly_loan(self, make_loan):
        loan = make_loan(start_date=date(2025, 1, 1), days=90)

        assert loan.interest_accrued == Decimal('30.37')
        assert loan.debt == Decimal('1030.37')

    def test_contract_hash_covers_terms(self, loan):
        accrual = calculate_accrual(loan.principal_amount, loan.start_date, loan.due_date)
        terms = build_contract_terms(
            loan.pk, loan.client_id, loan.principal_amount, loan.start_date, loan.due_date, accrual
        )

        assert loan.contract.terms == terms
        assert loan.contract.content_hash == calculate_content_hash(terms)

    def test_interest_movement(self, loan):
        movement = loan.movements.get()

        assert movement.movement_type == MovementType.INTEREST
        assert movement.amount == Decimal('5.00')
        assert movement.debt_after == Decimal('1005.00')
        assert movement.legacy_type == 'interes'

    def test_invalid_date_range(self, make_loan):
        with pytest.raises(InvalidDateRange):
            make_loan(days=0)

        assert not Loan.objects.exists()

    def test_principal_must_be_positive(self, make_loan):
        with pytest.raises(InvalidAmount):
            make_loan(principal='0.00')


# ============================================================================
# RECALCULATION
# ============================================================================

class TestRecalculate:
    """past_loan: 1000.00 from 2025-01-01, due 2025-01-11, 3 grace days."""

    def test_mora_after_grace_period(self, past_loan):
        loan = LoanService.recalculate(past_loan.pk, as_of=date(2025, 1, 21))

        assert loan.mora_accrued == Decimal('7.00')
        assert loan.debt == Decimal('1012.00')
        assert loan.status == LoanStatus.PARTIAL_DEFAULT
        assert loan.last_calculated_at is not None

        movement = loan.movements.get(movement_type=MovementType.MORA)
        assert movement.amount == Decimal('7.00')
        assert movement.debt_after == Decimal('1012.00')

    def test_within_grace_period(self, past_loan):
        loan = LoanService.recalculate(past_loan.pk, as_of=date(2025, 1, 13))

        assert loan.mora_accrued == Decimal('0.00')
        assert loan.debt == Decimal('1005.00')
        assert loan.status == LoanStatus.PARTIAL_DEFAULT
        assert not loan.movements.filter(movement_type=MovementType.MORA).exists()

    def test_full_default(self, past_loan):
        LoanService.recalculate(past_loan.pk, as_of=date(2025, 1, 21))
        loan = LoanService.recalculate(past_loan.pk, as_of=date(2025, 2, 20))

        assert loan.mora_accrued == Decimal('37.00')
        assert loan.debt == Decimal('1042.00')
        assert loan.status == LoanStatus.FULL_DEFAULT
        assert [m.amount for m in loan.movements.filter(movement_type=MovementType.MORA)] == [
            Decimal('7.00'), Decimal('30.00')
        ]

    def test_is_repeatable(self, past_loan):
        LoanService.recalculate(past_loan.pk, as_of=date(2025, 1, 21))
        loan = LoanService.recalculate(past_loan.pk, as_of=date(2025, 1, 21))

        assert loan.mora_accrued == Decimal('7.00')
        assert loan.movements.filter(movement_type=MovementType.MORA).count() == 1

    def test_mora_never_decreases(self, past_loan):
        LoanService.recalculate(past_loan.pk, as_of=date(2025, 1, 21))
        loan = LoanService.recalculate(past_loan.pk, as_of=date(2025, 1, 15))

        assert loan.mora_accrued == Decimal('7.00')

    def test_paid_loan_accrues_no_more_mora(self, past_loan, client_context, cashier_context, today):
        payment = PaymentService.create_payment(past_loan.pk, Decimal('5000.00'), 'cash', context=client_context)
        PaymentService.validate_payment(payment.pk, None, cashier_context)
        paid = Loan.objects.get(pk=past_loan.pk)

        loan = LoanService.recalculate(past_loan.pk, as_of=today + timedelta(days=60))

        assert paid.debt == Decimal('0.00')
        assert loan.mora_accrued == paid.mora_accrued
        assert loan.debt == Decimal('0.00')
        assert loan.status == LoanStatus.CLOSED

    def test_preview_does_not_write(self, past_loan):
        preview = LoanService.preview_recalculation(past_loan, as_of=date(2025, 1, 21))

        assert preview['mora_delta'] == Decimal('7.00')
        assert Loan.objects.get(pk=past_loan.pk).mora_accrued == Decimal('0.00')

    def test_version_is_bumped(self, past_loan):
        version = Loan.objects.get(pk=past_loan.pk).version

        loan = LoanService.recalculate(past_loan.pk, as_of=date(2025, 1, 21))

        assert loan.version == version + 1


# ============================================================================
# CLOSURE
# ============================================================================

class TestCloseLoan:

    def test_close(self, signed_loan, admin_context):
        loan = LoanService.close_loan(signed_loan.pk, 'Artículo recuperado', admin_context)

        assert loan.status == LoanStatus.CLOSED
        assert loan.closed_by_admin is True
        assert loan.closed_at is not None
        assert loan.closure_reason == 'Artículo recuperado'
        assert loan.updated_by_id == admin_context.user_id
        assert loan.derived_status() == LoanStatus.CLOSED

    def test_close_is_idempotent(self, signed_loan, admin_context):
        first = LoanService.close_loan(signed_loan.pk, 'primero', admin_context)
        second = LoanService.close_loan(signed_loan.pk, 'segundo', admin_context)

        assert second.version == first.version
        assert second.closure_reason == 'primero'

    def test_closed_loan_accrues_no_mora(self, past_loan, admin_context):
        LoanService.close_loan(past_loan.pk, 'cancelado', admin_context)

        loan = LoanService.recalculate(past_loan.pk, as_of=date(2025, 2, 20))

        assert loan.mora_accrued == Decimal('0.00')
        assert loan.status == LoanStatus.CLOSED


# ============================================================================
# SUMMARY
# ============================================================================

class TestLoanSummary:

    def test_signed_loan(self, signed_loan, today):
        summary = LoanService.get_loan_summary(signed_loan, today)

        assert summary['status'] == LoanStatus.ACTIVE
        assert summary['days_in_mora'] == 0
        assert summary['can_pay'] is True
        assert summary['can_settle'] is True
        assert summary['accrual']['interest_total'] == Decimal('5.00')

    def test_unsigned_loan_cannot_be_paid(self, loan, today):
        summary = LoanService.get_loan_summary(loan, today)

        assert summary['status'] == LoanStatus.AWAITING_SIGNATURES
        assert summary['can_pay'] is False

    def test_pending_payment_blocks_settlement(self, signed_loan, client_context, today):
        PaymentService.create_payment(signed_loan.pk, Decimal('100.00'), 'cash', context=client_context)

        summary = LoanService.get_loan_summary(signed_loan, today)

        assert summary['can_pay'] is True
        assert summary['can_settle'] is False

    def test_days_in_mora(self, past_loan):
        summary = LoanService.get_loan_summary(past_loan, date(2025, 1, 21))

        assert summary['days_in_mora'] == 10
        assert summary['status'] == LoanStatus.PARTIAL_DEFAULT


# ============================================================================
# STATISTICS
# ============================================================================

class TestStatusSummary:

    def test_counts_and_totals(self, make_loan, sign_contract, client_context):
        signed = sign_contract(make_loan())
        make_loan(principal='500.00')
        PaymentService.create_payment(signed.pk, Decimal('50.00'), 'cash', context=client_context)

        stats = get_loan_status_summary()

        assert stats['total_loans'] == 2
        assert stats['by_status'][LoanStatus.ACTIVE] == 1
        assert stats['by_status'][LoanStatus.AWAITING_SIGNATURES] == 1
        assert stats['by_legacy_status']['activo'] == 1
        assert stats['total_debt'] == '1507.50'
        assert stats['payments']['pending'] == 1
        assert stats['payments']['pending_amount'] == '50.00'

    def test_client_filter(self, make_loan, other_client_user):
        make_loan()
        make_loan(client_id=str(other_client_user.pk))

        stats = get_loan_status_summary({'client_id': other_client_user.pk})

        assert stats['total_loans'] == 1

    def test_empty(self):
        stats = get_loan_status_summary()

        assert stats['total_loans'] == 0
        assert stats['total_debt'] == '0.00'


# ============================================================================
# MANAGEMENT COMMAND
# ============================================================================

class TestRecalculateLoansCommand:

    def test_recalculates_open_loans(self, past_loan):
        out = StringIO()
        call_command('recalculate_loans', '--as-of', '2025-01-21', stdout=out)

        loan = Loan.objects.get(pk=past_loan.pk)
        assert loan.mora_accrued == Decimal('7.00')
        assert 'Recalculation completed' in out.getvalue()

    def test_dry_run(self, past_loan):
        out = StringIO()
        call_command('recalculate_loans', '--as-of', '2025-01-21', '--dry-run', stdout=out)

        assert Loan.objects.get(pk=past_loan.pk).mora_accrued == Decimal('0.00')
        assert str(past_loan.pk) in out.getvalue()

    def test_single_loan(self, past_loan, make_loan):
        other = make_loan(start_date=date(2025, 1, 1), days=10)

        call_command('recalculate_loans', '--loan', str(past_loan.pk), '--as-of', '2025-01-21', stdout=StringIO())

        assert Loan.objects.get(pk=past_loan.pk).mora_accrued == Decimal('7.00')
        assert Loan.objects.get(pk=other.pk).mora_accrued == Decimal('0.00')

    def test_unknown_loan(self):
        with pytest.raises(CommandError):
            call_command('recalculate_loans', '--loan', 'not-a-loan', stdout=StringIO())

    def test_invalid_date(self):
        with pytest.raises(CommandError):
            call_command('recalculate_loans', '--as-of', '21/01/2025', stdout=StringIO())

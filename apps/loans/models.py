# loans/models.py

from django.db import models
from django.utils import timezone
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from decimal import Decimal

from core.models import BaseModel
from core.utils import format_money

from .choices import (
    LoanStatus,
    PaymentStatus,
    SignatureState,
    MovementType,
    LOAN_STATUS_TO_LEGACY,
    PAYMENT_STATUS_TO_LEGACY,
    SIGNATURE_STATE_TO_LEGACY,
    MOVEMENT_TYPE_TO_LEGACY,
)
from .utils import (
    calculate_accrual,
    calculate_days_in_mora,
    calculate_expected_debt,
    classify_loan_status,
)

import logging

logger = logging.getLogger(__name__)


def money_field(verbose_name, **kwargs):
    kwargs.setdefault('max_digits', 12)
    kwargs.setdefault('decimal_places', 2)
    kwargs.setdefault('default', Decimal('0.00'))
    return models.DecimalField(verbose_name, **kwargs)


# =============================================================================
# LOAN MODEL
# =============================================================================

class Loan(BaseModel):
    """Pawn loans, created when an article evaluation is approved"""

    # Relationships - users and articles live in the external backend
    client_id = models.CharField(
        "Client ID",
        max_length=50,
        db_index=True,
        help_text="User ID of the borrowing client"
    )

    article_reference = models.CharField(
        "Article Reference",
        max_length=50,
        null=True,
        blank=True,
        help_text="Evaluated article pledged as collateral"
    )

    # Terms
    principal_amount = money_field(
        "Principal Amount",
        default=None,
        validators=[MinValueValidator(Decimal('0.00'))],
        help_text="Amount lent against the article"
    )

    start_date = models.DateField("Start Date")

    due_date = models.DateField("Due Date")

    # Accruals and balances
    interest_accrued = money_field("Interest Accrued")

    mora_accrued = money_field("Mora Accrued")

    debt = money_field("Outstanding Debt")

    total_paid = money_field(
        "Total Paid",
        help_text="Sum of validated payments"
    )

    overpaid_amount = money_field(
        "Overpaid Amount",
        help_text="Validated payments in excess of the outstanding debt"
    )

    # Status
    status = models.CharField(
        "Loan Status",
        max_length=20,
        choices=LoanStatus.choices,
        default=LoanStatus.AWAITING_SIGNATURES,
        db_index=True
    )

    last_calculated_at = models.DateTimeField("Last Calculated At", null=True, blank=True)

    activated_at = models.DateTimeField("Activated At", null=True, blank=True)

    # Administrative closure
    closed_by_admin = models.BooleanField("Closed By Administrator", default=False)

    closed_at = models.DateTimeField("Closed At", null=True, blank=True)

    closure_reason = models.TextField("Closure Reason", null=True, blank=True)

    def clean(self):
        """Validate loan terms"""
        super().clean()
        errors = {}

        if self.start_date and self.due_date and self.due_date <= self.start_date:
            errors['due_date'] = 'Due date must be after start date'

        if self.debt is not None and self.debt < 0:
            errors['debt'] = 'Debt cannot be negative'

        if errors:
            raise ValidationError(errors)

    # -------------------------------------------------------------------------
    # DERIVED STATE
    # -------------------------------------------------------------------------

    @property
    def signature_state(self):
        """Signature state of the loan's contract"""
        try:
            return self.contract.signature_state
        except Contract.DoesNotExist:
            return SignatureState.AWAITING_CLIENT

    def derived_status(self, today=None):
        """Recompute the lifecycle status without touching the cached field"""
        return classify_loan_status(
            debt=self.debt,
            due_date=self.due_date,
            signature_state=self.signature_state,
            today=today or timezone.localdate(),
            closed_by_admin=self.closed_by_admin,
        )

    def refresh_status(self, today=None):
        """
        Update the cached status from the classifier (not saved).

        Returns:
            bool: True if the status changed
        """
        new_status = self.derived_status(today)
        if new_status == self.status:
            return False

        logger.info(f"Loan {self.pk} status {self.status} -> {new_status}")
        self.status = new_status
        return True

    def expected_debt(self):
        """Debt implied by principal, accruals and validated payments"""
        return calculate_expected_debt(
            self.principal_amount,
            self.interest_accrued,
            self.mora_accrued,
            self.total_paid,
        )

    def estimate_accrual(self):
        """Accrual estimate for the loan's principal and term"""
        return calculate_accrual(self.principal_amount, self.start_date, self.due_date)

    def days_in_mora(self, today=None):
        return calculate_days_in_mora(self.due_date, today or timezone.localdate())

    @property
    def legacy_status(self):
        return LOAN_STATUS_TO_LEGACY[self.status]

    @property
    def formatted_debt(self):
        return format_money(self.debt)

    @classmethod
    def get_open_loans(cls):
        """All loans not yet closed"""
        return cls.objects.exclude(status=LoanStatus.CLOSED)

    def __str__(self):
        return f"Loan {self.pk} - client {self.client_id} ({format_money(self.principal_amount)})"

    class Meta:
        verbose_name = 'Loan'
        verbose_name_plural = 'Loans'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'due_date']),
            models.Index(fields=['client_id', 'status']),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(debt__gte=0),
                name='loan_debt_non_negative',
            ),
            models.CheckConstraint(
                condition=models.Q(due_date__gt=models.F('start_date')),
                name='loan_due_after_start',
            ),
        ]


# =============================================================================
# CONTRACT MODEL
# =============================================================================

class Contract(BaseModel):
    """Dual-party contract for a loan"""

    loan = models.OneToOneField(
        Loan,
        on_delete=models.CASCADE,
        related_name='contract',
        help_text="Loan this contract formalizes"
    )

    content_hash = models.CharField(
        "Content Hash",
        max_length=64,
        help_text="SHA-256 digest of the contract terms"
    )

    terms = models.JSONField(
        "Contract Terms",
        default=dict,
        help_text="Canonical terms agreed at creation, input of the content hash"
    )

    # Client signature
    client_signed_at = models.DateTimeField("Client Signed At", null=True, blank=True)

    client_signature = models.TextField("Client Signature", null=True, blank=True)

    client_signer_ip = models.GenericIPAddressField("Client Signer IP", null=True, blank=True)

    # Company signature
    company_signed_at = models.DateTimeField("Company Signed At", null=True, blank=True)

    company_signature = models.TextField("Company Signature", null=True, blank=True)

    company_signer_ip = models.GenericIPAddressField("Company Signer IP", null=True, blank=True)

    company_signed_by_id = models.CharField(
        "Company Signed By",
        max_length=50,
        null=True,
        blank=True,
        help_text="User ID of the staff member who signed for the company"
    )

    # Cryptographic signature
    crypto_signed = models.BooleanField("Cryptographically Signed", default=False)

    crypto_signature = models.TextField("Cryptographic Signature", null=True, blank=True)

    crypto_certificate_fingerprint = models.CharField(
        "Certificate Fingerprint",
        max_length=64,
        null=True,
        blank=True
    )

    crypto_signed_at = models.DateTimeField("Cryptographically Signed At", null=True, blank=True)

    @property
    def signature_state(self):
        if self.client_signed_at is None:
            return SignatureState.AWAITING_CLIENT
        if self.company_signed_at is None:
            return SignatureState.AWAITING_COMPANY
        if self.crypto_signed:
            return SignatureState.CRYPTO_SIGNED
        return SignatureState.FULLY_SIGNED

    @property
    def is_complete(self):
        """Both parties have signed"""
        return self.client_signed_at is not None and self.company_signed_at is not None

    @property
    def legacy_signature_status(self):
        return SIGNATURE_STATE_TO_LEGACY[self.signature_state]

    def __str__(self):
        return f"Contract {self.pk} for loan {self.loan_id} ({self.signature_state.label})"

    class Meta:
        verbose_name = 'Contract'
        verbose_name_plural = 'Contracts'
        ordering = ['-created_at']
        constraints = [
            models.CheckConstraint(
                condition=models.Q(company_signed_at__isnull=True) | models.Q(client_signed_at__isnull=False),
                name='contract_company_after_client',
            ),
        ]


# =============================================================================
# LOAN PAYMENT MODEL
# =============================================================================

class LoanPayment(BaseModel):
    """Payments submitted against a loan, recognized only once validated"""

    loan = models.ForeignKey(
        Loan,
        on_delete=models.CASCADE,
        related_name='payments',
        help_text="Loan this payment is for"
    )

    amount = money_field(
        "Payment Amount",
        default=None,
        validators=[MinValueValidator(Decimal('0.01'))]
    )

    # Open set: cash, transfer, card, or whatever the cashier records
    channel = models.CharField(
        "Payment Channel",
        max_length=30,
        help_text="How the client paid, e.g. cash, transfer, card"
    )

    reference = models.CharField(
        "Bank Reference",
        max_length=100,
        null=True,
        blank=True
    )

    proof_uri = models.CharField(
        "Proof of Payment URI",
        max_length=500,
        null=True,
        blank=True
    )

    status = models.CharField(
        "Payment Status",
        max_length=10,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
        db_index=True
    )

    note = models.TextField("Validation Note", null=True, blank=True)

    rejection_reason = models.TextField("Rejection Reason", null=True, blank=True)

    resolved_by_id = models.CharField(
        "Resolved By",
        max_length=50,
        null=True,
        blank=True,
        help_text="User ID who validated or rejected the payment"
    )

    resolved_at = models.DateTimeField("Resolved At", null=True, blank=True)

    applied_amount = money_field(
        "Applied Amount",
        help_text="Portion of the payment applied against the debt"
    )

    overage_amount = money_field(
        "Overage Amount",
        help_text="Portion of the payment in excess of the debt"
    )

    @property
    def legacy_status(self):
        return PAYMENT_STATUS_TO_LEGACY[self.status]

    @property
    def formatted_amount(self):
        return format_money(self.amount)

    def __str__(self):
        return f"Payment {self.pk} for loan {self.loan_id} - {format_money(self.amount)} ({self.status})"

    class Meta:
        verbose_name = 'Loan Payment'
        verbose_name_plural = 'Loan Payments'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['loan', 'status']),
            models.Index(fields=['status', 'created_at']),
        ]


# =============================================================================
# LOAN MOVEMENT MODEL
# =============================================================================

class LoanMovement(BaseModel):
    """Ledger of everything that changed a loan's debt"""

    loan = models.ForeignKey(
        Loan,
        on_delete=models.CASCADE,
        related_name='movements'
    )

    movement_type = models.CharField(
        "Movement Type",
        max_length=12,
        choices=MovementType.choices
    )

    amount = models.DecimalField("Amount", max_digits=12, decimal_places=2)

    debt_after = money_field("Debt After")

    note = models.TextField("Note", null=True, blank=True)

    payment = models.ForeignKey(
        LoanPayment,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='movements'
    )

    @property
    def legacy_type(self):
        return MOVEMENT_TYPE_TO_LEGACY[self.movement_type]

    def __str__(self):
        return f"{self.get_movement_type_display()} {self.amount} on loan {self.loan_id}"

    class Meta:
        verbose_name = 'Loan Movement'
        verbose_name_plural = 'Loan Movements'
        ordering = ['created_at']

# loans/services.py

"""
Loans Business Logic Services

Contains the state-changing workflows of the loan engine:
- Loan creation with contract and accrual
- Periodic recalculation of mora, debt and status
- Administrative closure
- Dual-party contract signature and cryptographic signing
- Payment registration, validation and rejection

Every operation runs in a single database transaction. State transitions
are conditional updates (see core.models.VersionedQuerySet.transition), so
of two concurrent callers exactly one wins and the other gets a domain error.
"""

from contextlib import contextmanager
from decimal import Decimal, InvalidOperation
from django.db import transaction, OperationalError, InterfaceError
from django.utils import timezone
import logging

from core.models import audit_changes
from core.utils import round_money, ZERO

from .choices import LoanStatus, PaymentStatus, MovementType
from .exceptions import (
    InvalidAmount,
    AlreadySigned,
    OutOfOrderSignature,
    AlreadyFinalized,
    ConcurrentUpdate,
    StoreUnavailable,
)
from .models import Loan, Contract, LoanPayment, LoanMovement
from .signing import load_contract_signer
from .utils import (
    calculate_accrual,
    calculate_mora_accrued,
    calculate_expected_debt,
    classify_loan_status,
    build_contract_terms,
    calculate_content_hash,
)

logger = logging.getLogger(__name__)

PAYABLE_STATUSES = (LoanStatus.ACTIVE, LoanStatus.PARTIAL_DEFAULT, LoanStatus.FULL_DEFAULT)


# =============================================================================
# HELPERS
# =============================================================================

@contextmanager
def store_errors(operation):
    """Translate database connection failures into StoreUnavailable"""
    try:
        yield
    except (OperationalError, InterfaceError) as e:
        logger.error(f"Store failure during {operation}: {e}", exc_info=True)
        raise StoreUnavailable() from e


def _lock_loan(loan_id):
    return Loan.objects.select_for_update().get(pk=loan_id)


def _write_loan(loan, changes, context=None, reason=None):
    """
    Version-checked write of a locked loan.

    Raises:
        ConcurrentUpdate: If the loan changed since it was read
    """
    updated = Loan.objects.transition(
        loan.pk,
        guard={'version': loan.version},
        **changes,
        **audit_changes(context, reason)
    )
    if not updated:
        logger.warning(f"Loan {loan.pk} modified concurrently (expected version {loan.version})")
        raise ConcurrentUpdate()

    loan.refresh_from_db()
    return loan


def _record_movement(loan, movement_type, amount, note=None, payment=None, context=None):
    movement = LoanMovement(
        loan=loan,
        movement_type=movement_type,
        amount=round_money(amount),
        debt_after=loan.debt,
        note=note,
        payment=payment,
    )
    movement.stamp(context)
    movement.save()
    return movement


def _apply_recalculation(loan, as_of, context=None, reason='Periodic recalculation'):
    """
    Write up-to-date mora, debt and status on a locked loan.

    Returns:
        dict: The applied values (see LoanService.preview_recalculation)
    """
    preview = LoanService.preview_recalculation(loan, as_of)
    _write_loan(
        loan,
        {
            'mora_accrued': preview['mora_accrued'],
            'debt': preview['debt'],
            'status': preview['status'],
            'last_calculated_at': timezone.now(),
        },
        context=context,
        reason=reason,
    )

    if preview['mora_delta'] > 0:
        _record_movement(
            loan,
            MovementType.MORA,
            preview['mora_delta'],
            note=f"Mora accrued through {as_of}",
            context=context,
        )
    return preview


def _parse_amount(amount):
    try:
        return round_money(amount)
    except (InvalidOperation, ValueError, TypeError) as e:
        raise InvalidAmount(f"Invalid amount: {amount!r}") from e


# =============================================================================
# LOAN SERVICES
# =============================================================================

class LoanService:
    """Loan creation, recalculation, closure and read model"""

    @staticmethod
    def create_loan(client_id, principal, start_date, due_date, article_reference=None, context=None):
        """
        Create a loan awaiting signatures, with its contract and interest movement.

        Args:
            client_id: Borrowing client's user ID
            principal: Amount lent
            start_date (date): Loan start date
            due_date (date): Loan due date
            article_reference: Evaluated article pledged as collateral
            context (AuthContext): Who is creating the loan

        Returns:
            Loan: The created loan

        Raises:
            InvalidDateRange: If due_date <= start_date
            InvalidAmount: If principal is not positive
        """
        principal = _parse_amount(principal)
        if principal <= 0:
            raise InvalidAmount(f"Principal must be greater than zero: {principal}")

        accrual = calculate_accrual(principal, start_date, due_date)
        interest = accrual['interest_total']

        with store_errors('create_loan'), transaction.atomic():
            loan = Loan(
                client_id=str(client_id),
                article_reference=str(article_reference) if article_reference else None,
                principal_amount=principal,
                start_date=start_date,
                due_date=due_date,
                interest_accrued=interest,
                debt=calculate_expected_debt(principal, interest, ZERO, ZERO),
                status=LoanStatus.AWAITING_SIGNATURES,
                last_calculated_at=timezone.now(),
            )
            loan.stamp(context, reason='Loan created')
            loan.save()

            terms = build_contract_terms(loan.pk, loan.client_id, principal, start_date, due_date, accrual)
            contract = Contract(loan=loan, terms=terms, content_hash=calculate_content_hash(terms))
            contract.stamp(context, reason='Contract generated')
            contract.save()

            _record_movement(
                loan,
                MovementType.INTEREST,
                interest,
                note=f"{accrual['mode'].label} interest for {accrual['term_days']} days",
                context=context,
            )

        logger.info(
            f"Created loan {loan.pk} for client {loan.client_id}: "
            f"principal={principal} interest={interest} mode={accrual['mode']}"
        )
        return loan

    @staticmethod
    def preview_recalculation(loan, as_of=None):
        """
        Compute what recalculate() would write, without writing it.

        Mora only accrues while the loan still owes money and never decreases.

        Returns:
            dict: mora_accrued, mora_delta, debt, status
        """
        as_of = as_of or timezone.localdate()

        mora = loan.mora_accrued
        if loan.debt > 0 and not loan.closed_by_admin:
            mora = max(mora, calculate_mora_accrued(loan.principal_amount, loan.due_date, as_of))

        debt = calculate_expected_debt(loan.principal_amount, loan.interest_accrued, mora, loan.total_paid)
        status = classify_loan_status(
            debt=debt,
            due_date=loan.due_date,
            signature_state=loan.signature_state,
            today=as_of,
            closed_by_admin=loan.closed_by_admin,
        )

        return {
            'mora_accrued': mora,
            'mora_delta': mora - loan.mora_accrued,
            'debt': debt,
            'status': status,
        }

    @staticmethod
    def recalculate(loan_id, as_of=None, context=None):
        """
        Bring a loan's mora, debt and status up to date.

        Args:
            loan_id: Loan primary key
            as_of (date): Calculation date, defaults to today

        Returns:
            Loan: The refreshed loan

        Raises:
            ConcurrentUpdate: If the loan was modified during the recalculation
        """
        as_of = as_of or timezone.localdate()

        with store_errors('recalculate'), transaction.atomic():
            loan = _lock_loan(loan_id)
            previous_status = loan.status
            _apply_recalculation(loan, as_of, context=context)

        if previous_status != loan.status:
            logger.info(f"Loan {loan.pk} status {previous_status} -> {loan.status}")
        logger.debug(f"Recalculated loan {loan.pk}: debt={loan.debt} mora={loan.mora_accrued}")
        return loan

    @staticmethod
    def close_loan(loan_id, reason, context=None):
        """
        Administrative closure. Closing an already closed loan is a no-op.

        Returns:
            Loan: The closed loan
        """
        with store_errors('close_loan'), transaction.atomic():
            loan = _lock_loan(loan_id)
            if loan.closed_by_admin:
                logger.info(f"Loan {loan.pk} already closed by an administrator")
                return loan

            _write_loan(
                loan,
                {
                    'closed_by_admin': True,
                    'closed_at': timezone.now(),
                    'closure_reason': reason,
                    'status': LoanStatus.CLOSED,
                },
                context=context,
                reason='Administrative closure',
            )

        logger.info(f"Loan {loan.pk} closed by {context.user_id if context else 'system'}: {reason}")
        return loan

    @staticmethod
    def get_loan_summary(loan, today=None):
        """
        Read model for the loan detail view.

        Returns:
            dict: Loan state with derived status and available actions
        """
        today = today or timezone.localdate()
        status = loan.derived_status(today)
        can_pay = status in PAYABLE_STATUSES and loan.debt > 0
        has_pending = loan.payments.filter(status=PaymentStatus.PENDING).exists()

        return {
            'loan': loan,
            'status': status,
            'days_in_mora': loan.days_in_mora(today),
            'can_pay': can_pay,
            'can_settle': can_pay and not has_pending,
            'has_pending_payments': has_pending,
            'signature_state': loan.signature_state,
            'accrual': calculate_accrual(loan.principal_amount, loan.start_date, loan.due_date),
        }


# =============================================================================
# CONTRACT SIGNATURE SERVICES
# =============================================================================

class ContractSignatureService:
    """Dual-party signature state machine: client, then company, then optional crypto"""

    @staticmethod
    def sign_client(contract_id, signature_blob, signer_ip=None, context=None):
        """
        Record the client's signature.

        Raises:
            Contract.DoesNotExist: Unknown contract
            AlreadySigned: The client has already signed
        """
        with store_errors('sign_client'), transaction.atomic():
            contract = Contract.objects.get(pk=contract_id)

            signed = Contract.objects.transition(
                contract.pk,
                guard={'client_signed_at__isnull': True},
                client_signed_at=timezone.now(),
                client_signature=signature_blob,
                client_signer_ip=signer_ip or None,
                **audit_changes(context, 'Client signature')
            )
            if not signed:
                logger.warning(f"Rejected client signature on contract {contract.pk}: already signed")
                raise AlreadySigned("Contract already signed by the client")

            contract.refresh_from_db()

        logger.info(f"Contract {contract.pk} signed by client {contract.loan.client_id}")
        return contract

    @staticmethod
    def sign_company(contract_id, signature_blob, signer_ip=None, context=None):
        """
        Record the company's signature and activate the loan.

        Raises:
            Contract.DoesNotExist: Unknown contract
            OutOfOrderSignature: The client has not signed yet
            AlreadySigned: The company has already signed
        """
        with store_errors('sign_company'), transaction.atomic():
            contract = Contract.objects.get(pk=contract_id)
            now = timezone.now()

            signed = Contract.objects.transition(
                contract.pk,
                guard={'client_signed_at__isnull': False, 'company_signed_at__isnull': True},
                company_signed_at=now,
                company_signature=signature_blob,
                company_signer_ip=signer_ip or None,
                company_signed_by_id=context.user_id if context else None,
                **audit_changes(context, 'Company signature')
            )
            contract.refresh_from_db()

            if not signed:
                if contract.client_signed_at is None:
                    logger.warning(f"Rejected company signature on contract {contract.pk}: client has not signed")
                    raise OutOfOrderSignature()
                logger.warning(f"Rejected company signature on contract {contract.pk}: already signed")
                raise AlreadySigned("Contract already signed by the company")

            loan = _lock_loan(contract.loan_id)
            loan.refresh_status()
            _write_loan(
                loan,
                {'status': loan.status, 'activated_at': now},
                context=context,
                reason='Contract fully signed',
            )

        logger.info(f"Contract {contract.pk} fully signed, loan {loan.pk} is now {loan.status}")
        return contract

    @staticmethod
    def sign_cryptographically(contract_id, context=None):
        """
        Sign a fully signed contract with the configured certificate.

        Idempotent: a contract that is already cryptographically signed is
        returned unchanged.

        Raises:
            Contract.DoesNotExist: Unknown contract
            OutOfOrderSignature: Both parties have not signed yet
            CryptoUnavailable: No certificate and key configured
        """
        with store_errors('sign_cryptographically'), transaction.atomic():
            contract = Contract.objects.get(pk=contract_id)

            if contract.crypto_signed:
                logger.info(f"Contract {contract.pk} already cryptographically signed")
                return contract

            if not contract.is_complete:
                logger.warning(f"Rejected cryptographic signature on contract {contract.pk}: not fully signed")
                raise OutOfOrderSignature("Both parties must sign before the cryptographic signature")

            signer = load_contract_signer()
            signature = signer.sign(contract.content_hash.encode('ascii'))

            signed = Contract.objects.transition(
                contract.pk,
                guard={'crypto_signed': False, 'company_signed_at__isnull': False},
                crypto_signed=True,
                crypto_signature=signature,
                crypto_certificate_fingerprint=signer.fingerprint,
                crypto_signed_at=timezone.now(),
                content_hash=calculate_content_hash(contract.terms, signature),
                **audit_changes(context, 'Cryptographic signature')
            )
            contract.refresh_from_db()

            if not signed:
                if contract.crypto_signed:
                    return contract
                raise ConcurrentUpdate()

        logger.info(f"Contract {contract.pk} cryptographically signed with certificate {signer.fingerprint}")
        return contract


# =============================================================================
# PAYMENT SERVICES
# =============================================================================

class PaymentService:
    """Payment registration and the pending -> validated/rejected state machine"""

    @staticmethod
    def create_payment(loan_id, amount, channel, reference=None, proof_uri=None, context=None):
        """
        Register a pending payment. Debt is untouched until validation.

        Raises:
            Loan.DoesNotExist: Unknown loan
            InvalidAmount: If amount is not positive
        """
        amount = _parse_amount(amount)
        if amount <= 0:
            raise InvalidAmount(f"Payment amount must be greater than zero: {amount}")

        with store_errors('create_payment'), transaction.atomic():
            loan = Loan.objects.get(pk=loan_id)

            payment = LoanPayment(
                loan=loan,
                amount=amount,
                channel=channel,
                reference=reference or None,
                proof_uri=proof_uri or None,
                status=PaymentStatus.PENDING,
            )
            payment.stamp(context, reason='Payment registered')
            payment.save()

        logger.info(f"Registered pending payment {payment.pk} of {amount} for loan {loan.pk} via {payment.channel}")
        return payment

    @staticmethod
    def validate_payment(payment_id, note=None, context=None):
        """
        Validate a pending payment and apply it to the loan.

        Mora accrued since the last recalculation is charged first, so the
        payment is applied against the debt as of today. The debt decreases
        by at most that value; any excess is recorded as overage on the
        payment and overpaid amount on the loan.

        Raises:
            LoanPayment.DoesNotExist: Unknown payment
            AlreadyFinalized: The payment is not pending
        """
        today = timezone.localdate()

        with store_errors('validate_payment'), transaction.atomic():
            payment = LoanPayment.objects.get(pk=payment_id)
            loan = _lock_loan(payment.loan_id)
            previous_status = loan.status
            _apply_recalculation(loan, today, context=context, reason='Recalculated before payment')

            applied = min(payment.amount, loan.debt)
            overage = payment.amount - applied

            validated = LoanPayment.objects.transition(
                payment.pk,
                guard={'status': PaymentStatus.PENDING},
                status=PaymentStatus.VALIDATED,
                note=note or None,
                resolved_by_id=context.user_id if context else None,
                resolved_at=timezone.now(),
                applied_amount=applied,
                overage_amount=overage,
                **audit_changes(context, 'Payment validated')
            )
            payment.refresh_from_db()

            if not validated:
                logger.warning(f"Rejected validation of payment {payment.pk}: already {payment.status}")
                raise AlreadyFinalized(f"Payment is already {payment.get_status_display().lower()}")

            new_debt = round_money(max(loan.debt - applied, Decimal('0')))
            _write_loan(
                loan,
                {
                    'debt': new_debt,
                    'total_paid': loan.total_paid + payment.amount,
                    'overpaid_amount': loan.overpaid_amount + overage,
                    'status': classify_loan_status(
                        debt=new_debt,
                        due_date=loan.due_date,
                        signature_state=loan.signature_state,
                        today=today,
                        closed_by_admin=loan.closed_by_admin,
                    ),
                },
                context=context,
                reason='Payment validated',
            )

            if applied > 0:
                _record_movement(loan, MovementType.PAYMENT, applied, note=note, payment=payment, context=context)
            if overage > 0:
                _record_movement(
                    loan,
                    MovementType.ADJUSTMENT,
                    overage,
                    note=f"Overpayment of {overage} on payment {payment.pk}",
                    payment=payment,
                    context=context,
                )

        logger.info(f"Validated payment {payment.pk}: applied={applied} overage={overage}, loan {loan.pk} debt={loan.debt}")
        if previous_status != loan.status:
            logger.info(f"Loan {loan.pk} status {previous_status} -> {loan.status}")
        return payment

    @staticmethod
    def reject_payment(payment_id, reason, context=None):
        """
        Reject a pending payment. Debt is untouched.

        Raises:
            LoanPayment.DoesNotExist: Unknown payment
            AlreadyFinalized: The payment is not pending
        """
        with store_errors('reject_payment'), transaction.atomic():
            payment = LoanPayment.objects.get(pk=payment_id)

            rejected = LoanPayment.objects.transition(
                payment.pk,
                guard={'status': PaymentStatus.PENDING},
                status=PaymentStatus.REJECTED,
                rejection_reason=reason,
                resolved_by_id=context.user_id if context else None,
                resolved_at=timezone.now(),
                **audit_changes(context, 'Payment rejected')
            )
            payment.refresh_from_db()

            if not rejected:
                logger.warning(f"Cannot reject payment {payment.pk}: already {payment.status}")
                raise AlreadyFinalized(f"Payment is already {payment.get_status_display().lower()}")

        logger.info(f"Rejected payment {payment.pk} for loan {payment.loan_id}: {reason}")
        return payment


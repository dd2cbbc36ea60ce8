# loans/views.py

"""
JSON endpoints for the loan engine.

Every view builds an AuthContext from the request and passes it to the
services explicitly. Responses carry the enum status plus the legacy
Spanish `estado` string the existing frontend reads.
"""

from django.contrib.auth.decorators import login_required
from django.core.exceptions import BadRequest, ObjectDoesNotExist, PermissionDenied
from django.middleware.csrf import get_token
from django.views.decorators.csrf import ensure_csrf_cookie
from django.views.decorators.http import require_http_methods
from django.utils import timezone
from functools import wraps
import logging

from core.context import AuthContext
from core.utils import (
    money_str,
    parse_request_data,
    parse_filters,
    create_json_response,
    create_error_response,
    create_form_error_response,
)

from .choices import Signer, AccrualMode, LOAN_STATUS_TO_LEGACY
from .conf import get_engine_setting
from .exceptions import LoanEngineError
from .forms import (
    AccrualEstimateForm,
    LoanCreateForm,
    LoanClosureForm,
    ContractSignatureForm,
    PaymentCreateForm,
    PaymentValidationForm,
    PaymentRejectionForm,
)
from .models import Loan, Contract
from .services import LoanService, ContractSignatureService, PaymentService
from .stats import get_loan_status_summary
from .utils import calculate_accrual

logger = logging.getLogger(__name__)

LEGACY_ACCRUAL_MODE = {
    AccrualMode.DAILY: 'diaria',
    AccrualMode.MONTHLY: 'mensual',
}


# =============================================================================
# HELPERS
# =============================================================================

class InvalidForm(Exception):
    def __init__(self, form):
        super().__init__('Invalid input')
        self.form = form


def json_endpoint(view_func):
    """Map engine, lookup and permission errors to JSON error responses"""

    @wraps(view_func)
    def wrapper(request, *args, **kwargs):
        try:
            return view_func(request, *args, **kwargs)
        except InvalidForm as e:
            return create_form_error_response(e.form)
        except BadRequest as e:
            return create_error_response(str(e), code='invalid_input', status=400)
        except PermissionDenied as e:
            logger.warning(f"Permission denied on {request.path} for user {request.user.pk}: {e}")
            return create_error_response(str(e) or 'Permission denied', code='forbidden', status=403)
        except ObjectDoesNotExist as e:
            return create_error_response(str(e) or 'Not found', code='not_found', status=404)
        except LoanEngineError as e:
            return create_error_response(str(e), code=e.code, status=e.http_status, retryable=e.retryable)

    return wrapper


def bind_form(form_class, request):
    """Parse the request body into a validated form"""
    try:
        data = parse_request_data(request)
    except ValueError as e:
        raise BadRequest(str(e)) from e

    form = form_class(data)
    if not form.is_valid():
        raise InvalidForm(form)
    return form


def require_roles(context, setting_key):
    allowed = get_engine_setting(setting_key)
    if not context.has_any_role(allowed):
        raise PermissionDenied(f"Requires one of the roles: {', '.join(allowed)}")


def serialize_accrual(accrual):
    data = {
        'mode': accrual['mode'],
        'term_days': accrual['term_days'],
        'n_installments': accrual['n_installments'],
        'daily_interest_rate': str(accrual['daily_interest_rate']),
        'daily_mora_rate': str(accrual['daily_mora_rate']),
        'grace_period_days': accrual['grace_period_days'],
        'suggested_installment': money_str(accrual['suggested_installment']),
        'interest_total': money_str(accrual['interest_total']),
        'mora_estimate': money_str(accrual['mora_estimate']),
        # Legacy field names
        'modo': LEGACY_ACCRUAL_MODE[accrual['mode']],
        'dias_prestamo': accrual['term_days'],
        'n_meses': accrual['n_installments'],
        'cuota_sugerida': money_str(accrual['suggested_installment']),
        'interes_total_estimado': money_str(accrual['interest_total']),
        'mora_estimativa': money_str(accrual['mora_estimate']),
    }
    if 'fixed_installment' in accrual:
        data['fixed_installment'] = money_str(accrual['fixed_installment'])
        data['detalle'] = {'cuota_fija': money_str(accrual['fixed_installment'])}
    return data


def serialize_loan(loan, today=None):
    status = loan.derived_status(today)
    return {
        'id': str(loan.pk),
        'client_id': loan.client_id,
        'article_reference': loan.article_reference,
        'principal_amount': money_str(loan.principal_amount),
        'start_date': loan.start_date.isoformat(),
        'due_date': loan.due_date.isoformat(),
        'interest_accrued': money_str(loan.interest_accrued),
        'mora_accrued': money_str(loan.mora_accrued),
        'debt': money_str(loan.debt),
        'debt_formatted': loan.formatted_debt,
        'total_paid': money_str(loan.total_paid),
        'overpaid_amount': money_str(loan.overpaid_amount),
        'status': status,
        'estado': LOAN_STATUS_TO_LEGACY[status],
        'closed_by_admin': loan.closed_by_admin,
        'version': loan.version,
    }


def serialize_contract(contract):
    return {
        'id': str(contract.pk),
        'loan_id': str(contract.loan_id),
        'content_hash': contract.content_hash,
        'signature_state': contract.signature_state,
        'estado': contract.legacy_signature_status,
        'contrato_completado': contract.is_complete,
        'firma_cliente_en': contract.client_signed_at.isoformat() if contract.client_signed_at else None,
        'firma_empresa_en': contract.company_signed_at.isoformat() if contract.company_signed_at else None,
        'crypto_signed': contract.crypto_signed,
        'crypto_certificate_fingerprint': contract.crypto_certificate_fingerprint,
        'crypto_signed_at': contract.crypto_signed_at.isoformat() if contract.crypto_signed_at else None,
    }


def serialize_payment(payment):
    return {
        'id': str(payment.pk),
        'loan_id': str(payment.loan_id),
        'amount': money_str(payment.amount),
        'amount_formatted': payment.formatted_amount,
        'channel': payment.channel,
        'reference': payment.reference,
        'proof_uri': payment.proof_uri,
        'status': payment.status,
        'estado': payment.legacy_status,
        'note': payment.note,
        'rejection_reason': payment.rejection_reason,
        'applied_amount': money_str(payment.applied_amount),
        'overage_amount': money_str(payment.overage_amount),
        'resolved_at': payment.resolved_at.isoformat() if payment.resolved_at else None,
    }


def is_staff(context):
    staff_roles = [
        *get_engine_setting('LOAN_ADMIN_ROLES'),
        *get_engine_setting('COMPANY_SIGNER_ROLES'),
        *get_engine_setting('PAYMENT_VALIDATOR_ROLES'),
    ]
    return context.has_any_role(staff_roles)


def get_visible_loan(loan_id, context):
    """Clients only see their own loans; staff see all"""
    loan = Loan.objects.get(pk=loan_id)
    if not context.is_user(loan.client_id) and not is_staff(context):
        raise PermissionDenied("You do not have access to this loan")
    return loan


# =============================================================================
# ACCRUAL VIEWS
# =============================================================================

@login_required
@require_http_methods(["POST"])
@json_endpoint
def accrual_estimate(request):
    """Accrual for an arbitrary principal and term"""
    form = bind_form(AccrualEstimateForm, request)
    accrual = calculate_accrual(
        form.cleaned_data['principal'],
        form.cleaned_data['start_date'],
        form.cleaned_data['due_date'],
    )
    return create_json_response(serialize_accrual(accrual))


@login_required
@require_http_methods(["GET"])
@json_endpoint
def loan_accrual(request, loan_id):
    """Accrual for a loan's principal and term"""
    context = AuthContext.from_request(request)
    loan = get_visible_loan(loan_id, context)
    payload = serialize_accrual(loan.estimate_accrual())
    payload['loan_id'] = str(loan.pk)
    return create_json_response(payload)


# =============================================================================
# LOAN VIEWS
# =============================================================================

@login_required
@require_http_methods(["GET"])
@json_endpoint
def loan_status(request, loan_id):
    """Derived status and summary of a loan"""
    context = AuthContext.from_request(request)
    loan = get_visible_loan(loan_id, context)
    today = timezone.localdate()
    summary = LoanService.get_loan_summary(loan, today)

    payload = serialize_loan(loan, today)
    payload.update({
        'days_in_mora': summary['days_in_mora'],
        'dias_mora': summary['days_in_mora'],
        'puede_pagar': summary['can_pay'],
        'puede_liquidar': summary['can_settle'],
        'has_pending_payments': summary['has_pending_payments'],
        'accrual': serialize_accrual(summary['accrual']),
    })
    try:
        payload['contrato'] = serialize_contract(loan.contract)
    except Contract.DoesNotExist:
        payload['contrato'] = None

    return create_json_response(payload)


@login_required
@require_http_methods(["POST"])
@json_endpoint
def loan_create(request):
    """Create a loan and its contract (staff)"""
    context = AuthContext.from_request(request)
    require_roles(context, 'LOAN_ADMIN_ROLES')
    form = bind_form(LoanCreateForm, request)

    loan = LoanService.create_loan(
        client_id=form.cleaned_data['client_id'],
        principal=form.cleaned_data['principal'],
        start_date=form.cleaned_data['start_date'],
        due_date=form.cleaned_data['due_date'],
        article_reference=form.cleaned_data['article_reference'] or None,
        context=context,
    )

    payload = serialize_loan(loan)
    payload['contrato'] = serialize_contract(loan.contract)
    return create_json_response(payload, status=201)


@login_required
@require_http_methods(["POST"])
@json_endpoint
def loan_close(request, loan_id):
    """Administrative closure (staff)"""
    context = AuthContext.from_request(request)
    require_roles(context, 'LOAN_ADMIN_ROLES')
    form = bind_form(LoanClosureForm, request)

    loan = LoanService.close_loan(loan_id, form.cleaned_data['reason'], context=context)
    payload = serialize_loan(loan)
    payload['closure_reason'] = loan.closure_reason
    return create_json_response(payload)


# =============================================================================
# PAYMENT VIEWS
# =============================================================================

@login_required
@require_http_methods(["POST"])
@json_endpoint
def payment_create(request, loan_id):
    """Register a pending payment on a loan"""
    context = AuthContext.from_request(request)
    get_visible_loan(loan_id, context)
    form = bind_form(PaymentCreateForm, request)

    payment = PaymentService.create_payment(
        loan_id,
        form.cleaned_data['amount'],
        form.cleaned_data['channel'],
        reference=form.cleaned_data['reference'] or None,
        proof_uri=form.cleaned_data['proof_uri'] or None,
        context=context,
    )
    return create_json_response(serialize_payment(payment), status=201)


@login_required
@require_http_methods(["POST"])
@json_endpoint
def payment_validate(request, payment_id):
    """Validate a pending payment (cashier, supervisor, administrator)"""
    context = AuthContext.from_request(request)
    require_roles(context, 'PAYMENT_VALIDATOR_ROLES')
    form = bind_form(PaymentValidationForm, request)

    payment = PaymentService.validate_payment(payment_id, form.cleaned_data['note'], context=context)

    payload = serialize_payment(payment)
    payload['loan'] = serialize_loan(payment.loan)
    return create_json_response(payload)


@login_required
@require_http_methods(["POST"])
@json_endpoint
def payment_reject(request, payment_id):
    """Reject a pending payment (cashier, supervisor, administrator)"""
    context = AuthContext.from_request(request)
    require_roles(context, 'PAYMENT_VALIDATOR_ROLES')
    form = bind_form(PaymentRejectionForm, request)

    payment = PaymentService.reject_payment(payment_id, form.cleaned_data['reason'], context=context)
    return create_json_response(serialize_payment(payment))


# =============================================================================
# CONTRACT VIEWS
# =============================================================================

@login_required
@require_http_methods(["POST"])
@json_endpoint
def contract_sign(request, contract_id):
    """Client or company signature, selected by `firmante`"""
    context = AuthContext.from_request(request)
    form = bind_form(ContractSignatureForm, request)
    signer = form.cleaned_data['signer']
    signer_ip = form.cleaned_data['ip'] or context.ip_address

    if signer == Signer.CLIENT:
        contract = Contract.objects.select_related('loan').get(pk=contract_id)
        if not context.is_user(contract.loan.client_id):
            raise PermissionDenied("Only the loan's client can sign as client")
        contract = ContractSignatureService.sign_client(
            contract_id, form.cleaned_data['signature'], signer_ip, context=context
        )
    else:
        require_roles(context, 'COMPANY_SIGNER_ROLES')
        contract = ContractSignatureService.sign_company(
            contract_id, form.cleaned_data['signature'], signer_ip, context=context
        )

    payload = serialize_contract(contract)
    payload['loan'] = serialize_loan(Loan.objects.get(pk=contract.loan_id))
    return create_json_response(payload)


@login_required
@require_http_methods(["POST"])
@json_endpoint
def contract_sign_crypto(request, contract_id):
    """Cryptographic signature of a fully signed contract"""
    context = AuthContext.from_request(request)
    require_roles(context, 'COMPANY_SIGNER_ROLES')

    contract = ContractSignatureService.sign_cryptographically(contract_id, context=context)
    payload = serialize_contract(contract)
    payload['crypto_signature'] = contract.crypto_signature
    return create_json_response(payload)


# =============================================================================
# STATISTICS
# =============================================================================

@login_required
@require_http_methods(["GET"])
@json_endpoint
def loan_stats(request):
    """Loan status summary (staff), optionally for one client (?client_id=)"""
    context = AuthContext.from_request(request)
    require_roles(context, 'PAYMENT_VALIDATOR_ROLES')
    filters = parse_filters(request, ['client_id'])
    return create_json_response(get_loan_status_summary(filters))


# =============================================================================
# CSRF
# =============================================================================

@ensure_csrf_cookie
@require_http_methods(["GET"])
def csrf_token(request):
    """
    Issue the CSRF cookie and token for the JSON frontend.

    POST endpoints are CSRF-protected: clients send the returned token in
    the X-CSRFToken header along with the csrftoken cookie.
    """
    return create_json_response({'csrfToken': get_token(request)})

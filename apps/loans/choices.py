# loans/choices.py

"""
Closed status enums for loans, payments, contracts and ledger movements.

Each enum has an explicit mapping to the legacy lower-case Spanish strings
still found in persisted data and expected by the existing frontend. Those
strings are only produced or parsed at the system boundary.
"""

from django.db import models


class LoanStatus(models.TextChoices):
    AWAITING_SIGNATURES = 'AWAITING_SIGNATURES', 'Awaiting Signatures'
    ACTIVE = 'ACTIVE', 'Active'
    PARTIAL_DEFAULT = 'PARTIAL_DEFAULT', 'Partial Default'
    FULL_DEFAULT = 'FULL_DEFAULT', 'Full Default'
    CLOSED = 'CLOSED', 'Closed'


class PaymentStatus(models.TextChoices):
    PENDING = 'PENDING', 'Pending'
    VALIDATED = 'VALIDATED', 'Validated'
    REJECTED = 'REJECTED', 'Rejected'


class SignatureState(models.TextChoices):
    AWAITING_CLIENT = 'AWAITING_CLIENT', 'Awaiting Client Signature'
    AWAITING_COMPANY = 'AWAITING_COMPANY', 'Awaiting Company Signature'
    FULLY_SIGNED = 'FULLY_SIGNED', 'Fully Signed'
    CRYPTO_SIGNED = 'CRYPTO_SIGNED', 'Cryptographically Signed'


class MovementType(models.TextChoices):
    INTEREST = 'INTEREST', 'Interest'
    MORA = 'MORA', 'Mora'
    PAYMENT = 'PAYMENT', 'Payment'
    ADJUSTMENT = 'ADJUSTMENT', 'Adjustment'


class AccrualMode(models.TextChoices):
    DAILY = 'DAILY', 'Daily'
    MONTHLY = 'MONTHLY', 'Monthly'


class Signer(models.TextChoices):
    CLIENT = 'CLIENT', 'Client'
    COMPANY = 'COMPANY', 'Company'


# =============================================================================
# LEGACY STRING MAPPINGS
# =============================================================================

LOAN_STATUS_TO_LEGACY = {
    LoanStatus.AWAITING_SIGNATURES: 'pendiente_firma',
    LoanStatus.ACTIVE: 'activo',
    LoanStatus.PARTIAL_DEFAULT: 'en_mora_parcial',
    LoanStatus.FULL_DEFAULT: 'en_mora_total',
    LoanStatus.CLOSED: 'cerrado',
}

LEGACY_TO_LOAN_STATUS = {
    'pendiente_firma': LoanStatus.AWAITING_SIGNATURES,
    'activo': LoanStatus.ACTIVE,
    'en_mora_parcial': LoanStatus.PARTIAL_DEFAULT,
    'en_mora_total': LoanStatus.FULL_DEFAULT,
    'cerrado': LoanStatus.CLOSED,
    'liquidado': LoanStatus.CLOSED,
    'cancelado': LoanStatus.CLOSED,
}

PAYMENT_STATUS_TO_LEGACY = {
    PaymentStatus.PENDING: 'pendiente',
    PaymentStatus.VALIDATED: 'validado',
    PaymentStatus.REJECTED: 'rechazado',
}

LEGACY_TO_PAYMENT_STATUS = {legacy: status for status, legacy in PAYMENT_STATUS_TO_LEGACY.items()}

SIGNATURE_STATE_TO_LEGACY = {
    SignatureState.AWAITING_CLIENT: 'pendiente',
    SignatureState.AWAITING_COMPANY: 'parcial',
    SignatureState.FULLY_SIGNED: 'completo',
    SignatureState.CRYPTO_SIGNED: 'completo',
}

LEGACY_TO_SIGNER = {
    'cliente': Signer.CLIENT,
    'client': Signer.CLIENT,
    'empresa': Signer.COMPANY,
    'company': Signer.COMPANY,
}

MOVEMENT_TYPE_TO_LEGACY = {
    MovementType.INTEREST: 'interes',
    MovementType.MORA: 'mora',
    MovementType.PAYMENT: 'pago',
    MovementType.ADJUSTMENT: 'ajuste',
}


def _normalize(value):
    return str(value).strip().lower() if value is not None else ''


def _parse(value, enum_cls, legacy_map, label):
    normalized = _normalize(value)
    if normalized in legacy_map:
        return legacy_map[normalized]
    upper = normalized.upper()
    if upper in enum_cls.values:
        return enum_cls(upper)
    raise ValueError(f"Unknown {label}: {value!r}")


def parse_loan_status(value):
    """Map a legacy or enum string to LoanStatus (case-insensitive)"""
    return _parse(value, LoanStatus, LEGACY_TO_LOAN_STATUS, 'loan status')


def parse_payment_status(value):
    """Map a legacy or enum string to PaymentStatus (case-insensitive)"""
    return _parse(value, PaymentStatus, LEGACY_TO_PAYMENT_STATUS, 'payment status')


def parse_signer(value):
    """Map 'cliente'/'empresa' (or enum names) to Signer"""
    return _parse(value, Signer, LEGACY_TO_SIGNER, 'signer')

"""Pytest configuration and fixtures."""

from datetime import date, datetime, timedelta, timezone as dt_timezone
from decimal import Decimal

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID
from django.contrib.auth.models import Group
from django.utils import timezone

from core.context import AuthContext
from loans.services import ContractSignatureService, LoanService


# ============================================================================
# USERS AND CONTEXTS
# ============================================================================

def _user_with_roles(django_user_model, username, *roles):
    user = django_user_model.objects.create_user(username=username, password='secret-pass')
    for role in roles:
        group, _ = Group.objects.get_or_create(name=role)
        user.groups.add(group)
    return user


@pytest.fixture
def client_user(db, django_user_model):
    """Borrowing client without staff roles."""
    return _user_with_roles(django_user_model, 'cliente')


@pytest.fixture
def other_client_user(db, django_user_model):
    return _user_with_roles(django_user_model, 'otro-cliente')


@pytest.fixture
def admin_user(db, django_user_model):
    return _user_with_roles(django_user_model, 'admin', 'ADMINISTRADOR')


@pytest.fixture
def appraiser_user(db, django_user_model):
    return _user_with_roles(django_user_model, 'valuador', 'VALUADOR')


@pytest.fixture
def cashier_user(db, django_user_model):
    return _user_with_roles(django_user_model, 'cajero', 'CAJERO')


@pytest.fixture
def client_context(client_user):
    return AuthContext(user_id=str(client_user.pk), ip_address='10.0.0.5')


@pytest.fixture
def admin_context(admin_user):
    return AuthContext(
        user_id=str(admin_user.pk),
        roles=frozenset({'ADMINISTRADOR'}),
        ip_address='10.0.0.1',
    )


@pytest.fixture
def cashier_context(cashier_user):
    return AuthContext(
        user_id=str(cashier_user.pk),
        roles=frozenset({'CAJERO'}),
        ip_address='10.0.0.2',
    )


# ============================================================================
# LOANS
# ============================================================================

@pytest.fixture
def today():
    return timezone.localdate()


@pytest.fixture
def make_loan(client_user, admin_context):
    """Factory creating loans for the client through the service layer."""

    def _make(principal='1000.00', start_date=None, days=10, client_id=None):
        start_date = start_date or timezone.localdate()
        return LoanService.create_loan(
            client_id=client_id or str(client_user.pk),
            principal=Decimal(principal),
            start_date=start_date,
            due_date=start_date + timedelta(days=days),
            article_reference='ART-001',
            context=admin_context,
        )

    return _make


@pytest.fixture
def loan(make_loan):
    """1000.00 for 10 days starting today: 5.00 interest, 1005.00 debt."""
    return make_loan()


@pytest.fixture
def sign_contract(client_context, admin_context):
    """Sign a loan's contract by both parties."""

    def _sign(loan):
        ContractSignatureService.sign_client(loan.contract.pk, 'client-signature', '10.0.0.5', client_context)
        ContractSignatureService.sign_company(loan.contract.pk, 'company-signature', '10.0.0.1', admin_context)
        loan.refresh_from_db()
        return loan

    return _sign


@pytest.fixture
def signed_loan(loan, sign_contract):
    return sign_contract(loan)


@pytest.fixture
def past_loan(make_loan, sign_contract):
    """Signed 1000.00 loan from 2025-01-01 due 2025-01-11."""
    return sign_contract(make_loan(start_date=date(2025, 1, 1), days=10))


# ============================================================================
# SIGNING CERTIFICATE
# ============================================================================

@pytest.fixture
def signing_certificate(tmp_path, settings):
    """Self-signed RSA certificate configured for contract signing."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, 'Empeno Contract Signer')])
    now = datetime.now(dt_timezone.utc)

    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .sign(key, hashes.SHA256())
    )

    cert_path = tmp_path / 'signer.crt'
    key_path = tmp_path / 'signer.key'
    cert_path.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ))

    settings.CONTRACT_SIGNING = {
        'CERTIFICATE_PATH': str(cert_path),
        'PRIVATE_KEY_PATH': str(key_path),
        'PRIVATE_KEY_PASSWORD': '',
    }
    return certificate


@pytest.fixture
def no_signing_certificate(settings):
    settings.CONTRACT_SIGNING = {}

"""
test_signatures.py - Contract signature state machine

Tests:
- Initial state of a new contract
- Client then company ordering
- Double signatures
- Loan activation on full signature
- Cryptographic signing, configuration and idempotence
- Re-hashing covers the terms agreed at creation
- Certificate loading
"""

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
import pytest

from loans.choices import LoanStatus, SignatureState
from loans.exceptions import AlreadySigned, CryptoUnavailable, OutOfOrderSignature
from loans.models import Contract
from loans.services import ContractSignatureService
from loans.signing import ContractSigner, load_contract_signer
from loans.utils import calculate_content_hash

pytestmark = pytest.mark.django_db


# ============================================================================
# CLIENT AND COMPANY SIGNATURES
# ============================================================================

class TestSignatureOrdering:

    def test_new_contract_awaits_client(self, loan):
        assert loan.contract.signature_state == SignatureState.AWAITING_CLIENT
        assert loan.status == LoanStatus.AWAITING_SIGNATURES

    def test_client_signature(self, loan, client_context):
        contract = ContractSignatureService.sign_client(loan.contract.pk, 'blob', '10.0.0.5', client_context)

        assert contract.signature_state == SignatureState.AWAITING_COMPANY
        assert contract.client_signed_at is not None
        assert contract.client_signature == 'blob'
        assert contract.client_signer_ip == '10.0.0.5'
        assert contract.updated_by_id == client_context.user_id
        assert contract.legacy_signature_status == 'parcial'

    def test_company_before_client_is_rejected(self, loan, admin_context):
        with pytest.raises(OutOfOrderSignature):
            ContractSignatureService.sign_company(loan.contract.pk, 'blob', None, admin_context)

        contract = Contract.objects.get(pk=loan.contract.pk)
        assert contract.company_signed_at is None
        assert contract.signature_state == SignatureState.AWAITING_CLIENT

    def test_client_cannot_sign_twice(self, loan, client_context):
        ContractSignatureService.sign_client(loan.contract.pk, 'first', None, client_context)
        first = Contract.objects.get(pk=loan.contract.pk)

        with pytest.raises(AlreadySigned):
            ContractSignatureService.sign_client(loan.contract.pk, 'second', None, client_context)

        contract = Contract.objects.get(pk=loan.contract.pk)
        assert contract.client_signature == 'first'
        assert contract.client_signed_at == first.client_signed_at

    def test_full_signature_activates_loan(self, loan, client_context, admin_context):
        ContractSignatureService.sign_client(loan.contract.pk, 'client', None, client_context)
        contract = ContractSignatureService.sign_company(loan.contract.pk, 'company', '10.0.0.1', admin_context)

        assert contract.signature_state == SignatureState.FULLY_SIGNED
        assert contract.is_complete
        assert contract.company_signed_by_id == admin_context.user_id
        assert contract.legacy_signature_status == 'completo'

        loan.refresh_from_db()
        assert loan.status == LoanStatus.ACTIVE
        assert loan.activated_at is not None

    def test_company_cannot_sign_twice(self, signed_loan, admin_context):
        with pytest.raises(AlreadySigned):
            ContractSignatureService.sign_company(signed_loan.contract.pk, 'again', None, admin_context)

    def test_each_signature_bumps_version(self, loan, client_context, admin_context):
        initial = Contract.objects.get(pk=loan.contract.pk).version

        ContractSignatureService.sign_client(loan.contract.pk, 'client', None, client_context)
        ContractSignatureService.sign_company(loan.contract.pk, 'company', None, admin_context)

        assert Contract.objects.get(pk=loan.contract.pk).version == initial + 2

    def test_unknown_contract(self, client_context):
        with pytest.raises(Contract.DoesNotExist):
            ContractSignatureService.sign_client('00000000-0000-0000-0000-000000000000', 'blob', None, client_context)

    def test_stale_guard_does_not_write(self, loan):
        assert Contract.objects.transition(loan.contract.pk, guard={'client_signed_at__isnull': False}) is False
        assert Contract.objects.get(pk=loan.contract.pk).version == loan.contract.version


# ============================================================================
# CRYPTOGRAPHIC SIGNATURE
# ============================================================================

class TestCryptographicSignature:

    def test_requires_full_signature(self, loan, client_context, admin_context, signing_certificate):
        ContractSignatureService.sign_client(loan.contract.pk, 'client', None, client_context)

        with pytest.raises(OutOfOrderSignature):
            ContractSignatureService.sign_cryptographically(loan.contract.pk, admin_context)

    def test_requires_configuration(self, signed_loan, admin_context, no_signing_certificate):
        with pytest.raises(CryptoUnavailable):
            ContractSignatureService.sign_cryptographically(signed_loan.contract.pk, admin_context)

        assert Contract.objects.get(pk=signed_loan.contract.pk).crypto_signed is False

    def test_signs_content_hash(self, signed_loan, admin_context, signing_certificate):
        original_hash = Contract.objects.get(pk=signed_loan.contract.pk).content_hash

        contract = ContractSignatureService.sign_cryptographically(signed_loan.contract.pk, admin_context)

        assert contract.crypto_signed is True
        assert contract.signature_state == SignatureState.CRYPTO_SIGNED
        assert contract.crypto_signed_at is not None
        assert contract.crypto_certificate_fingerprint == signing_certificate.fingerprint(hashes.SHA256()).hex()
        assert contract.content_hash != original_hash
        assert len(contract.content_hash) == 64

        signer = load_contract_signer()
        assert signer.verify(original_hash.encode('ascii'), contract.crypto_signature)

    def test_is_idempotent(self, signed_loan, admin_context, signing_certificate):
        first = ContractSignatureService.sign_cryptographically(signed_loan.contract.pk, admin_context)
        second = ContractSignatureService.sign_cryptographically(signed_loan.contract.pk, admin_context)

        assert second.crypto_signature == first.crypto_signature
        assert second.content_hash == first.content_hash
        assert second.version == first.version

    def test_new_hash_covers_agreed_terms(self, make_loan, sign_contract, admin_context, signing_certificate,
                                          settings):
        loan = make_loan()
        agreed_terms = Contract.objects.get(loan=loan).terms
        settings.LOAN_ENGINE = {**settings.LOAN_ENGINE, 'DAILY_INTEREST_RATE': '0.0020'}
        sign_contract(loan)

        contract = ContractSignatureService.sign_cryptographically(loan.contract.pk, admin_context)

        assert contract.terms == agreed_terms
        assert contract.terms['daily_interest_rate'] == '0.0005'
        assert contract.terms['interest_total'] == '5.00'
        assert contract.content_hash == calculate_content_hash(agreed_terms, contract.crypto_signature)

    def test_loan_stays_active(self, signed_loan, admin_context, signing_certificate):
        ContractSignatureService.sign_cryptographically(signed_loan.contract.pk, admin_context)

        signed_loan.refresh_from_db()
        assert signed_loan.derived_status() == LoanStatus.ACTIVE


# ============================================================================
# CERTIFICATE LOADING
# ============================================================================

class TestContractSigner:

    def test_missing_files(self, tmp_path):
        config = {
            'certificate_path': str(tmp_path / 'missing.crt'),
            'private_key_path': str(tmp_path / 'missing.key'),
        }
        with pytest.raises(CryptoUnavailable):
            load_contract_signer(config)

    def test_key_must_match_certificate(self, signing_certificate):
        other_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        with pytest.raises(CryptoUnavailable):
            ContractSigner(signing_certificate, other_key)

    def test_verify_rejects_tampered_data(self, signing_certificate):
        signer = load_contract_signer()
        signature = signer.sign(b'contract-digest')

        assert signer.verify(b'contract-digest', signature)
        assert not signer.verify(b'other-digest', signature)

# loans/signing.py

"""
Certificate-backed contract signing.

Loads a PEM X.509 certificate and its private key from the paths in the
CONTRACT_SIGNING setting and signs contract digests with them. RSA keys
sign with PKCS#1 v1.5, EC keys with ECDSA; both use SHA-256.
"""

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
import base64
import logging

from .conf import get_signing_config
from .exceptions import CryptoUnavailable

logger = logging.getLogger(__name__)


def _public_der(public_key):
    return public_key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


class ContractSigner:
    """Signs and verifies contract digests with one certificate/key pair"""

    def __init__(self, certificate, private_key):
        if not isinstance(private_key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
            raise CryptoUnavailable(f"Unsupported signing key type: {type(private_key).__name__}")

        if _public_der(certificate.public_key()) != _public_der(private_key.public_key()):
            raise CryptoUnavailable("Signing key does not match the certificate")

        self.certificate = certificate
        self.private_key = private_key

    @classmethod
    def from_files(cls, certificate_path, private_key_path, password=None):
        with open(certificate_path, 'rb') as f:
            certificate = x509.load_pem_x509_certificate(f.read())

        with open(private_key_path, 'rb') as f:
            private_key = serialization.load_pem_private_key(
                f.read(),
                password=password.encode('utf-8') if password else None,
            )

        return cls(certificate, private_key)

    @property
    def fingerprint(self):
        """SHA-256 fingerprint of the certificate, lower-case hex"""
        return self.certificate.fingerprint(hashes.SHA256()).hex()

    def sign(self, data):
        """
        Sign raw bytes.

        Returns:
            str: Base64-encoded signature
        """
        if isinstance(self.private_key, rsa.RSAPrivateKey):
            signature = self.private_key.sign(data, padding.PKCS1v15(), hashes.SHA256())
        else:
            signature = self.private_key.sign(data, ec.ECDSA(hashes.SHA256()))
        return base64.b64encode(signature).decode('ascii')

    def verify(self, data, signature_b64):
        """
        Check a base64 signature against the certificate's public key.

        Returns:
            bool: True if the signature is valid
        """
        public_key = self.certificate.public_key()
        signature = base64.b64decode(signature_b64)
        try:
            if isinstance(public_key, rsa.RSAPublicKey):
                public_key.verify(signature, data, padding.PKCS1v15(), hashes.SHA256())
            else:
                public_key.verify(signature, data, ec.ECDSA(hashes.SHA256()))
        except InvalidSignature:
            return False
        return True


def load_contract_signer(config=None):
    """
    Build a signer from the CONTRACT_SIGNING setting.

    Raises:
        CryptoUnavailable: If signing is not configured or the files cannot be loaded
    """
    config = config or get_signing_config()
    if config is None:
        raise CryptoUnavailable()

    try:
        return ContractSigner.from_files(
            config['certificate_path'],
            config['private_key_path'],
            config.get('private_key_password'),
        )
    except (OSError, ValueError, TypeError) as e:
        logger.error(f"Cannot load contract signing certificate: {e}", exc_info=True)
        raise CryptoUnavailable(f"Cannot load signing certificate: {e}") from e

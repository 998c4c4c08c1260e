"""Cryptographic utilities for certificate operations.

Provides key generation, PEM transport encoding, encryption of private keys
at rest and thumbprint computation.
"""

import base64
import hashlib
import logging
import os

from cryptography import x509
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

from pki.domain.errors import DecodeError, GenerationError, PKIError

logger = logging.getLogger(__name__)

RSA_PUBLIC_EXPONENT = 65537


class CryptoError(PKIError):
    """Raised when a cryptographic operation fails."""

    pass


def generate_rsa_key(key_size: int) -> rsa.RSAPrivateKey:
    """Generate an RSA private key.

    Raises:
        GenerationError: If the key cannot be generated (e.g. invalid size).
    """
    try:
        return rsa.generate_private_key(public_exponent=RSA_PUBLIC_EXPONENT, key_size=key_size)
    except (ValueError, TypeError) as e:
        raise GenerationError(f"can't generate key: {e}") from e


def encode_private_key(key: PrivateKeyTypes) -> bytes:
    """Encode a private key as PEM (RSA keys use the PKCS#1 "RSA PRIVATE KEY" block)."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def encode_certificate(cert: x509.Certificate) -> bytes:
    """Encode a certificate as a PEM "CERTIFICATE" block."""
    return cert.public_bytes(serialization.Encoding.PEM)


def encode_crl(crl: x509.CertificateRevocationList) -> bytes:
    """Encode a CRL as a PEM "X509 CRL" block."""
    return crl.public_bytes(serialization.Encoding.PEM)


def load_certificate(pem: bytes | str) -> x509.Certificate:
    """Parse a PEM certificate.

    Raises:
        DecodeError: If the bytes are not a PEM certificate.
    """
    if isinstance(pem, str):
        pem = pem.encode("utf-8")
    try:
        return x509.load_pem_x509_certificate(pem)
    except ValueError as e:
        raise DecodeError(f"can't parse cert: {e}") from e


def load_crl(pem: bytes) -> x509.CertificateRevocationList:
    """Parse a PEM CRL.

    Raises:
        DecodeError: If the bytes are not a PEM CRL.
    """
    try:
        return x509.load_pem_x509_crl(pem)
    except ValueError as e:
        raise DecodeError(f"can't parse crl: {e}") from e


def get_encryption_key() -> bytes:
    """Load encryption key from CERT_ENCRYPTION_KEY environment variable.

    The key should be a URL-safe base64-encoded 32-byte key suitable for Fernet.

    Raises:
        CryptoError: If the key is not set or invalid.
    """
    key_str = os.environ.get("CERT_ENCRYPTION_KEY")
    if not key_str:
        raise CryptoError("CERT_ENCRYPTION_KEY environment variable not set")

    try:
        key_bytes = key_str.encode("utf-8")
        Fernet(key_bytes)  # Validates the key format
        return key_bytes
    except ValueError as e:
        raise CryptoError(f"Invalid CERT_ENCRYPTION_KEY: {e}") from e


def encrypt_private_key(pem: bytes, key: bytes | None = None) -> str:
    """Encrypt a private key PEM using Fernet symmetric encryption.

    Args:
        pem: The private key in PEM format.
        key: Optional encryption key. If not provided, loads from env var.

    Returns:
        Base64-encoded encrypted data.
    """
    if key is None:
        key = get_encryption_key()

    fernet = Fernet(key)
    encrypted = fernet.encrypt(pem)
    return base64.urlsafe_b64encode(encrypted).decode("utf-8")


def decrypt_private_key(encrypted: str, key: bytes | None = None) -> bytes:
    """Decrypt an encrypted private key back to PEM bytes.

    Raises:
        CryptoError: If decryption fails (wrong key or tampered data).
    """
    if key is None:
        key = get_encryption_key()

    try:
        fernet = Fernet(key)
        encrypted_bytes = base64.urlsafe_b64decode(encrypted.encode("utf-8"))
        return fernet.decrypt(encrypted_bytes)
    except (InvalidToken, ValueError) as e:
        raise CryptoError(f"Failed to decrypt private key: {e}") from e


def compute_thumbprint(cert_pem: bytes) -> str:
    """Compute the lowercase hex SHA-256 thumbprint of a PEM certificate."""
    cert = load_certificate(cert_pem)
    der_bytes = cert.public_bytes(serialization.Encoding.DER)
    return hashlib.sha256(der_bytes).hexdigest().lower()


def generate_fernet_key() -> str:
    """Generate a new Fernet encryption key.

    Use this utility to generate a key for CERT_ENCRYPTION_KEY.
    """
    return Fernet.generate_key().decode("utf-8")

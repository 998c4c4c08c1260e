"""Value objects shared by the authority, issuer and revocation components."""

from dataclasses import dataclass
from datetime import datetime

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

from pki.domain.errors import DecodeError
from pki.domain.states import AUTHORITY_CN


@dataclass(frozen=True)
class X509Pair:
    """A private key and its certificate, both PEM encoded.

    Pairs are immutable once created. Revoking a pair never touches it; it
    only adds the serial to the revocation list.
    """

    key_pem: bytes
    cert_pem: bytes
    common_name: str
    serial: int

    @property
    def is_authority(self) -> bool:
        return self.common_name == AUTHORITY_CN

    def decode(self) -> tuple[PrivateKeyTypes, x509.Certificate]:
        """Parse the PEM material.

        Raises:
            DecodeError: If either the key or the certificate is malformed.
        """
        try:
            key = serialization.load_pem_private_key(self.key_pem, password=None)
        except (ValueError, TypeError) as e:
            raise DecodeError(f"can't parse key: {e}") from e

        try:
            cert = x509.load_pem_x509_certificate(self.cert_pem)
        except ValueError as e:
            raise DecodeError(f"can't parse cert: {e}") from e

        return key, cert

    def certificate(self) -> x509.Certificate:
        """Parse only the certificate half."""
        try:
            return x509.load_pem_x509_certificate(self.cert_pem)
        except ValueError as e:
            raise DecodeError(f"can't parse cert: {e}") from e


@dataclass(frozen=True)
class RevokedEntry:
    """One row of the revocation list."""

    serial: int
    revoked_at: datetime


@dataclass(frozen=True)
class StoredCRLRecord:
    """The current CRL blob together with the version it was stored under."""

    pem: bytes
    version: int

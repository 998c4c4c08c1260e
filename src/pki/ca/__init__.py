"""Certificate Authority module for the private PKI.

This module provides:
- Authority lifecycle (self-signed authority creation, signer selection)
- Leaf certificate issuance for client and server roles
- CRL maintenance and revocation status
- PEM encoding and encryption of private keys at rest
"""

from pki.ca.authority import AuthorityManager, StorageAuthoritySelector
from pki.ca.issuer import CertificateIssuer
from pki.ca.revocation import RevocationEngine

__all__ = ["AuthorityManager", "CertificateIssuer", "RevocationEngine", "StorageAuthoritySelector"]

"""Non-standard certificate extensions carried by leaf certificates.

Role marker:
    Netscape cert-type (2.16.840.1.113730.1.1), a DER BIT STRING with two
    significant bits (ssl_client, ssl_server), encoded with asn1crypto.
    Client sets the first bit (content byte 0x80), server the second (0x40).

Group metadata:
    A dedicated application extension (PKI_GROUPS_EXTENSION_OID) whose value
    is DER ``SEQUENCE OF UTF8String``. It is always non-critical and means
    nothing to standard verifiers.

    Older certificates carried groups in the NameConstraints excluded DNS
    subtrees. Those are still read, never written.
"""

import logging

from asn1crypto import core
from cryptography import x509
from cryptography.x509.oid import ObjectIdentifier

from pki.domain.errors import DecodeError, NoGroupsError
from pki.domain.states import CertificateRole
from shared.config import settings

logger = logging.getLogger(__name__)

NS_CERT_TYPE_OID = ObjectIdentifier("2.16.840.1.113730.1.1")

# Two significant bits: (ssl_client, ssl_server)
ROLE_BITS: dict[CertificateRole, tuple[int, int]] = {
    CertificateRole.CLIENT: (1, 0),
    CertificateRole.SERVER: (0, 1),
}


class _GroupList(core.SequenceOf):  # type: ignore[misc]
    """ASN.1 SEQUENCE OF UTF8String, the group extension value."""

    _child_spec = core.UTF8String


def groups_oid() -> ObjectIdentifier:
    return ObjectIdentifier(settings.PKI_GROUPS_EXTENSION_OID)


def role_extension(role: CertificateRole) -> x509.UnrecognizedExtension:
    """Build the cert-type extension marking a leaf as client or server."""
    return x509.UnrecognizedExtension(NS_CERT_TYPE_OID, core.BitString(ROLE_BITS[role]).dump())


def read_role(cert: x509.Certificate) -> CertificateRole:
    """Read the role marker back from a certificate.

    Raises:
        DecodeError: If the marker is missing or carries an unknown value.
    """
    try:
        ext = cert.extensions.get_extension_for_oid(NS_CERT_TYPE_OID)
    except x509.ExtensionNotFound as e:
        raise DecodeError("certificate carries no role marker") from e

    try:
        bits = core.BitString.load(ext.value.value).native  # type: ignore[attr-defined]
    except ValueError as e:
        raise DecodeError(f"malformed role marker: {e}") from e

    # Named bit lists may drop trailing zero bits
    bits = tuple(bits) + (0,) * (2 - len(bits))
    for role, expected in ROLE_BITS.items():
        if bits == expected:
            return role
    raise DecodeError(f"unknown role marker: {bits}")


def groups_extension(groups: list[str]) -> x509.UnrecognizedExtension:
    """Encode group tags as the dedicated group extension."""
    return x509.UnrecognizedExtension(groups_oid(), _GroupList(list(groups)).dump())


def read_groups(cert: x509.Certificate) -> list[str]:
    """Extract group tags, preferring the dedicated extension.

    Raises:
        NoGroupsError: If the certificate carries no groups.
        DecodeError: If the group extension is malformed.
    """
    try:
        ext = cert.extensions.get_extension_for_oid(groups_oid())
    except x509.ExtensionNotFound:
        groups = _read_legacy_groups(cert)
    else:
        try:
            groups = list(_GroupList.load(ext.value.value).native)  # type: ignore[attr-defined]
        except ValueError as e:
            raise DecodeError(f"malformed group extension: {e}") from e

    if not groups:
        raise NoGroupsError("No groups in certificate")
    return groups


def _read_legacy_groups(cert: x509.Certificate) -> list[str]:
    """Groups stored as NameConstraints excluded DNS names by older issuers."""
    try:
        constraints = cert.extensions.get_extension_for_class(x509.NameConstraints).value
    except x509.ExtensionNotFound:
        return []

    groups = [
        subtree.value
        for subtree in constraints.excluded_subtrees or []
        if isinstance(subtree, x509.DNSName)
    ]
    if groups:
        logger.debug("legacy_groups_read", extra={"serial": cert.serial_number})
    return groups

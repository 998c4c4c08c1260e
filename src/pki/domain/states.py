from enum import StrEnum

# Common name reserved for authority pairs
AUTHORITY_CN = "ca"


class CertificateRole(StrEnum):
    CLIENT = "client"
    SERVER = "server"


class CertificateStatus(StrEnum):
    """Lifecycle of a serial number: ISSUED -> REVOKED."""

    ISSUED = "issued"
    REVOKED = "revoked"  # Terminal state

"""Error taxonomy for authority, issuance and revocation operations."""


class PKIError(Exception):
    """Base class for all PKI failures."""

    pass


class AllocationError(PKIError):
    """Raised when the serial allocator fails to produce a serial."""

    pass


class GenerationError(PKIError):
    """Raised when key or certificate construction fails."""

    pass


class StorageError(PKIError):
    """Raised when persistence fails, on read or on write."""

    pass


class CRLConflictError(StorageError):
    """Raised when a conditional CRL replace lost against a concurrent writer."""

    def __init__(self, expected_version: int | None, actual_version: int | None):
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"CRL version conflict: expected {expected_version}, found {actual_version}"
        )


class NotFoundError(PKIError):
    """Raised when no authority, CRL or pair exists for a lookup."""

    pass


class AuthorityUnavailableError(NotFoundError):
    """Raised when no authority pair has been created yet."""

    pass


class AuthorityCorruptError(PKIError):
    """Raised when a stored authority pair cannot be decoded."""

    pass


class DecodeError(PKIError):
    """Raised when key or certificate bytes are malformed."""

    pass


class NoGroupsError(PKIError):
    """Raised when a certificate carries no group metadata."""

    pass

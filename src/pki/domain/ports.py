"""
Ports: Protocol-based contracts for the collaborators the CA core depends on.

The core (authority manager, issuer, revocation engine) only talks to these
protocols. Adapters satisfy them structurally, without inheritance:

  - pki.storage.memory         → in-process implementations (tests, single node)
  - pki.repository.repositories → SQLAlchemy-backed implementations

All methods are coroutines.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pki.domain.pairs import StoredCRLRecord, X509Pair


@runtime_checkable
class KeyStorage(Protocol):
    """
    Port: durable mapping from common name to the key/certificate pairs issued for it.

    - put: store a pair keyed by common name and serial (StorageError on failure)
    - get_last_by_cn: most recently stored pair for a name (NotFoundError if none)
    - get_by_cn: every pair ever stored for a name, possibly empty
    """

    async def put(self, pair: X509Pair) -> None: ...

    async def get_last_by_cn(self, common_name: str) -> X509Pair: ...

    async def get_by_cn(self, common_name: str) -> list[X509Pair]: ...


@runtime_checkable
class SerialAllocator(Protocol):
    """
    Port: hand out serial numbers.

    Concurrent calls must never return the same value and a value is never
    reused. Raises AllocationError on exhaustion or failure.
    """

    async def next(self) -> int: ...


@runtime_checkable
class CRLStore(Protocol):
    """
    Port: holder of the single current signed CRL.

    - get: current record (NotFoundError if no CRL was ever written)
    - put: atomically replace the CRL if the stored version still equals
      expected_version (None means "no CRL stored yet"). Raises
      CRLConflictError on mismatch and StorageError on other failures; the
      previous CRL is preserved in both cases. Returns the new version.
    """

    async def get(self) -> StoredCRLRecord: ...

    async def put(self, pem: bytes, expected_version: int | None) -> int: ...


@runtime_checkable
class AuthoritySelector(Protocol):
    """
    Port: which authority pair signs what.

    The two rules are independent and only agree when authority pairs are
    created in increasing-serial order through a single allocator.

    - for_issuance: authority signing new leaf certificates (most recently created)
    - for_crl: authority signing the CRL (numerically highest serial)
    - all: every authority pair

    for_issuance and for_crl raise AuthorityUnavailableError when no authority exists.
    """

    async def for_issuance(self) -> X509Pair: ...

    async def for_crl(self) -> X509Pair: ...

    async def all(self) -> list[X509Pair]: ...

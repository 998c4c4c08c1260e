"""In-process collaborators for tests and single-node deployments.

Nothing here survives a restart.
"""

import asyncio

from pki.domain.errors import AllocationError, CRLConflictError, NotFoundError, StorageError
from pki.domain.pairs import StoredCRLRecord, X509Pair


class InMemoryKeyStorage:
    def __init__(self) -> None:
        # common name -> pairs in insertion order
        self.pairs: dict[str, list[X509Pair]] = {}
        self._serials: set[int] = set()

    async def put(self, pair: X509Pair) -> None:
        if pair.serial in self._serials:
            raise StorageError(f"serial {pair.serial} already stored")
        self._serials.add(pair.serial)
        self.pairs.setdefault(pair.common_name, []).append(pair)

    async def get_last_by_cn(self, common_name: str) -> X509Pair:
        pairs = self.pairs.get(common_name)
        if not pairs:
            raise NotFoundError(f"no pair for {common_name!r}")
        return pairs[-1]

    async def get_by_cn(self, common_name: str) -> list[X509Pair]:
        return list(self.pairs.get(common_name, []))


class InMemorySerialAllocator:
    """Monotonic counter; start and limit bound the serial space."""

    def __init__(self, start: int = 1, limit: int | None = None) -> None:
        self._next = start
        self._limit = limit
        self._lock = asyncio.Lock()

    async def next(self) -> int:
        async with self._lock:
            if self._limit is not None and self._next > self._limit:
                raise AllocationError("serial space exhausted")
            serial = self._next
            self._next += 1
            return serial


class InMemoryCRLStore:
    def __init__(self) -> None:
        self._record: StoredCRLRecord | None = None
        self._lock = asyncio.Lock()

    async def get(self) -> StoredCRLRecord:
        if self._record is None:
            raise NotFoundError("no crl issued yet")
        return self._record

    async def put(self, pem: bytes, expected_version: int | None) -> int:
        async with self._lock:
            current = self._record.version if self._record else None
            if current != expected_version:
                raise CRLConflictError(expected_version, current)
            version = (current or 0) + 1
            self._record = StoredCRLRecord(pem=pem, version=version)
            return version

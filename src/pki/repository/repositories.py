"""SQLAlchemy-backed collaborators: key storage, serial allocation, CRL store.

Each operation runs in its own session and transaction, so the repositories
can be shared by concurrent requests.
"""

import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pki.ca.crypto import CryptoError, decrypt_private_key, encrypt_private_key
from pki.domain.errors import AllocationError, CRLConflictError, NotFoundError, StorageError
from pki.domain.models import KeyPairRecord, RevocationListRecord, SerialAllocation, utc_now
from pki.domain.pairs import StoredCRLRecord, X509Pair

logger = logging.getLogger(__name__)


class SqlKeyStorage:
    """Key/certificate pairs in the key_pairs table.

    Private keys are Fernet-encrypted at rest (CERT_ENCRYPTION_KEY unless an
    explicit key is given).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        encryption_key: bytes | None = None,
    ):
        self.session_factory = session_factory
        self.encryption_key = encryption_key

    async def put(self, pair: X509Pair) -> None:
        """Store a pair. Serial numbers are unique across the table."""
        try:
            encrypted_key = encrypt_private_key(pair.key_pem, self.encryption_key)
        except (CryptoError, ValueError) as e:
            raise StorageError(f"encrypting private key for serial {pair.serial}: {e}") from e

        record = KeyPairRecord(
            common_name=pair.common_name,
            serial_number=str(pair.serial),
            certificate_pem=pair.cert_pem.decode("ascii"),
            private_key_pem_encrypted=encrypted_key,
        )
        try:
            async with self.session_factory() as session, session.begin():
                session.add(record)
        except IntegrityError as e:
            raise StorageError(f"serial {pair.serial} already stored") from e
        except SQLAlchemyError as e:
            logger.error(
                "pair_store_failed",
                extra={"common_name": pair.common_name, "error": str(e)},
            )
            raise StorageError(f"storing pair {pair.common_name!r}: {e}") from e

    async def get_last_by_cn(self, common_name: str) -> X509Pair:
        """Most recently stored pair for a common name."""
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(KeyPairRecord)
                    .where(KeyPairRecord.common_name == common_name)
                    .order_by(KeyPairRecord.pair_id.desc())
                    .limit(1)
                )
                record = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageError(f"fetching last pair for {common_name!r}: {e}") from e

        if record is None:
            raise NotFoundError(f"no pair for {common_name!r}")
        return self._to_pair(record)

    async def get_by_cn(self, common_name: str) -> list[X509Pair]:
        """All pairs for a common name, oldest first."""
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(KeyPairRecord)
                    .where(KeyPairRecord.common_name == common_name)
                    .order_by(KeyPairRecord.pair_id)
                )
                records = list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StorageError(f"fetching pairs for {common_name!r}: {e}") from e

        return [self._to_pair(record) for record in records]

    def _to_pair(self, record: KeyPairRecord) -> X509Pair:
        try:
            key_pem = decrypt_private_key(record.private_key_pem_encrypted, self.encryption_key)
        except CryptoError as e:
            raise StorageError(f"decrypting private key for serial {record.serial_number}: {e}") from e

        return X509Pair(
            key_pem=key_pem,
            cert_pem=record.certificate_pem.encode("ascii"),
            common_name=record.common_name,
            serial=int(record.serial_number),
        )


class SqlSerialAllocator:
    """Serials from an auto-increment primary key; the database guarantees uniqueness."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def next(self) -> int:
        try:
            async with self.session_factory() as session, session.begin():
                allocation = SerialAllocation()
                session.add(allocation)
                await session.flush()
                return allocation.serial
        except SQLAlchemyError as e:
            logger.error("serial_allocation_failed", extra={"error": str(e)})
            raise AllocationError(f"allocating serial: {e}") from e


class SqlCRLStore:
    """Single-row CRL holder with a version column used for compare-and-swap."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get(self) -> StoredCRLRecord:
        try:
            async with self.session_factory() as session:
                record = await session.get(
                    RevocationListRecord, RevocationListRecord.SINGLETON_ID
                )
        except SQLAlchemyError as e:
            raise StorageError(f"fetching crl: {e}") from e

        if record is None:
            raise NotFoundError("no crl issued yet")
        return StoredCRLRecord(pem=record.crl_pem.encode("ascii"), version=record.version)

    async def put(self, pem: bytes, expected_version: int | None) -> int:
        """Replace the CRL if it is still at expected_version.

        The replace is a single conditional statement; on any failure the
        stored CRL is unchanged.
        """
        if expected_version is None:
            return await self._insert_first(pem)

        new_version = expected_version + 1
        try:
            async with self.session_factory() as session, session.begin():
                result = await session.execute(
                    update(RevocationListRecord)
                    .where(RevocationListRecord.crl_id == RevocationListRecord.SINGLETON_ID)
                    .where(RevocationListRecord.version == expected_version)
                    .values(crl_pem=pem.decode("ascii"), version=new_version, updated_at=utc_now())
                )
                updated = result.rowcount
        except SQLAlchemyError as e:
            raise StorageError(f"storing crl: {e}") from e

        if updated != 1:
            raise CRLConflictError(expected_version, await self._current_version())
        return new_version

    async def _insert_first(self, pem: bytes) -> int:
        try:
            async with self.session_factory() as session, session.begin():
                session.add(
                    RevocationListRecord(
                        crl_id=RevocationListRecord.SINGLETON_ID,
                        crl_pem=pem.decode("ascii"),
                        version=1,
                    )
                )
        except IntegrityError as e:
            raise CRLConflictError(None, await self._current_version()) from e
        except SQLAlchemyError as e:
            raise StorageError(f"storing crl: {e}") from e
        return 1

    async def _current_version(self) -> int | None:
        try:
            return (await self.get()).version
        except NotFoundError:
            return None

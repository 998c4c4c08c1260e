"""PKI service: one entry point wiring authority, issuance and revocation."""

from cryptography import x509
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pki.ca.authority import AuthorityManager, StorageAuthoritySelector
from pki.ca.issuer import CertificateIssuer
from pki.ca.revocation import RevocationEngine
from pki.domain.pairs import RevokedEntry, X509Pair
from pki.domain.ports import AuthoritySelector, CRLStore, KeyStorage, SerialAllocator
from pki.domain.states import CertificateRole, CertificateStatus
from pki.repository.repositories import SqlCRLStore, SqlKeyStorage, SqlSerialAllocator
from pki.storage.memory import InMemoryCRLStore, InMemoryKeyStorage, InMemorySerialAllocator


class PKIService:
    """Facade over the authority manager, certificate issuer and revocation engine.

    All three share one storage, one serial allocator and one authority
    selector. Keep a single instance per process: the revocation engine's
    lock only serializes CRL updates issued through the same instance.
    """

    def __init__(
        self,
        storage: KeyStorage,
        serials: SerialAllocator,
        crl_store: CRLStore,
        selector: AuthoritySelector | None = None,
        *,
        ca_key_size: int | None = None,
        leaf_key_size: int | None = None,
        san_ips: list[str] | None = None,
    ):
        self.storage = storage
        self.selector = selector or StorageAuthoritySelector(storage)
        self.authorities = AuthorityManager(
            storage, serials, self.selector, key_size=ca_key_size
        )
        self.issuer = CertificateIssuer(
            storage, serials, self.selector, key_size=leaf_key_size, san_ips=san_ips
        )
        self.revocation = RevocationEngine(storage, crl_store, self.selector)

    # Authority

    async def create_authority(self) -> X509Pair:
        return await self.authorities.create_authority()

    async def current_signing_authority(self) -> X509Pair:
        return await self.authorities.current_signing_authority()

    # Issuance

    async def issue_certificate(
        self, common_name: str, is_server: bool, groups: list[str] | None = None
    ) -> X509Pair:
        return await self.issuer.issue(common_name, is_server, groups)

    async def issue_certificate_with_authority(
        self, common_name: str, is_server: bool, groups: list[str] | None = None
    ) -> tuple[X509Pair, X509Pair]:
        return await self.issuer.issue_with_authority(common_name, is_server, groups)

    def extract_groups(self, certificate: x509.Certificate | bytes | str) -> list[str]:
        return self.issuer.extract_groups(certificate)

    def read_role(self, certificate: x509.Certificate | bytes | str) -> CertificateRole:
        return self.issuer.read_role(certificate)

    # Revocation

    async def get_crl(self) -> x509.CertificateRevocationList:
        return await self.revocation.get_crl()

    async def get_crl_pem(self) -> bytes:
        return await self.revocation.get_crl_pem()

    async def revoke_one(self, serial: int) -> None:
        await self.revocation.revoke_one(serial)

    async def revoke_all_by_cn(self, common_name: str) -> list[int]:
        return await self.revocation.revoke_all_by_cn(common_name)

    async def is_revoked(self, serial: int) -> bool:
        return await self.revocation.is_revoked(serial)

    async def revoked_entries(self) -> list[RevokedEntry]:
        return await self.revocation.revoked_entries()

    async def status(self, serial: int) -> CertificateStatus:
        """ISSUED until the serial appears in the CRL, REVOKED afterwards."""
        if await self.revocation.is_revoked(serial):
            return CertificateStatus.REVOKED
        return CertificateStatus.ISSUED


def build_sql_pki_service(
    session_factory: async_sessionmaker[AsyncSession],
    encryption_key: bytes | None = None,
    **kwargs,
) -> PKIService:
    """PKI service persisting pairs, serials and the CRL through SQLAlchemy."""
    return PKIService(
        storage=SqlKeyStorage(session_factory, encryption_key),
        serials=SqlSerialAllocator(session_factory),
        crl_store=SqlCRLStore(session_factory),
        **kwargs,
    )


def build_in_memory_pki_service(**kwargs) -> PKIService:
    """PKI service keeping everything in process memory."""
    return PKIService(
        storage=InMemoryKeyStorage(),
        serials=InMemorySerialAllocator(),
        crl_store=InMemoryCRLStore(),
        **kwargs,
    )

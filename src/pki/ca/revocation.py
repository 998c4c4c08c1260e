"""Certificate revocation list maintenance.

Every revocation rebuilds and re-signs the whole CRL from the previous one:

    read current CRL -> add (serial, now) -> drop duplicate serials
        -> sign with highest-serial authority -> conditional replace

The read-modify-write sequence runs under an asyncio.Lock, and the final
replace is a compare-and-swap on the CRL store version, so two revocations
can never silently overwrite each other, even across processes sharing the
same store.
"""

import asyncio
import logging
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from opentelemetry import trace

from pki.ca.crypto import encode_crl, load_crl
from pki.domain.errors import (
    AuthorityCorruptError,
    CRLConflictError,
    DecodeError,
    GenerationError,
    NotFoundError,
    PKIError,
    StorageError,
)
from pki.domain.pairs import RevokedEntry, StoredCRLRecord
from pki.domain.ports import AuthoritySelector, CRLStore, KeyStorage
from pki.metrics import pki_metrics

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def deduplicate(entries: Iterable[RevokedEntry]) -> list[RevokedEntry]:
    """Keep the first entry for each serial, comparing serials at full precision."""
    seen: set[int] = set()
    unique: list[RevokedEntry] = []
    for entry in entries:
        if entry.serial in seen:
            continue
        seen.add(entry.serial)
        unique.append(entry)
    return unique


class RevocationEngine:
    """Maintains the signed CRL and answers revocation status queries."""

    CRL_VALIDITY = timedelta(days=365 * 99)

    def __init__(
        self,
        storage: KeyStorage,
        crl_store: CRLStore,
        selector: AuthoritySelector,
    ) -> None:
        self._storage = storage
        self._crl_store = crl_store
        self._selector = selector
        self._lock = asyncio.Lock()

    async def get_crl(self) -> x509.CertificateRevocationList:
        """Current signed CRL.

        Raises:
            NotFoundError: If no CRL has ever been issued.
        """
        record = await self._fetch_record()
        return load_crl(record.pem)

    async def get_crl_pem(self) -> bytes:
        """Current signed CRL in its PEM transport form.

        Raises:
            NotFoundError: If no CRL has ever been issued.
        """
        record = await self._fetch_record()
        return record.pem

    async def revoked_entries(self) -> list[RevokedEntry]:
        """Entries of the current CRL; empty if no CRL exists."""
        _, entries = await self._load_current()
        return entries

    async def revoke_one(self, serial: int, *, reason: str = "serial") -> None:
        """Add a serial to the CRL and publish the re-signed list.

        Revoking an already revoked serial keeps its original entry.
        ``reason`` labels the revocation metric.

        Raises:
            AuthorityUnavailableError: If no authority pair exists.
            AuthorityCorruptError: If the CRL-signing authority cannot be decoded.
            GenerationError: If the CRL cannot be built or signed.
            CRLConflictError: If another writer replaced the CRL concurrently.
            StorageError: If the CRL could not be read or stored; the previous
                CRL is left untouched.
        """
        with tracer.start_as_current_span("RevocationEngine.revoke_one") as span:
            span.set_attribute("serial", str(serial))

            async with self._lock:
                record, entries = await self._load_current()

                authority = await self._selector.for_crl()
                span.set_attribute("authority_serial", str(authority.serial))
                try:
                    ca_key, ca_cert = authority.decode()
                except DecodeError as e:
                    logger.error(
                        "authority_decode_failed",
                        extra={"serial": str(authority.serial), "error": str(e)},
                    )
                    raise AuthorityCorruptError(
                        f"can't decode ca certs for signing crl: {e}"
                    ) from e

                now = datetime.now(timezone.utc)
                entries = deduplicate([*entries, RevokedEntry(serial=serial, revoked_at=now)])
                expected_version = record.version if record else None
                crl_number = (expected_version or 0) + 1

                crl = self._sign(entries, ca_key, ca_cert, now, crl_number)
                await self._publish(encode_crl(crl), expected_version)

            pki_metrics.record_certificate_revoked(reason)
            pki_metrics.record_crl_published(len(entries))
            logger.info(
                "certificate_revoked",
                extra={
                    "serial": str(serial),
                    "authority_serial": str(authority.serial),
                    "crl_number": crl_number,
                    "crl_entries": len(entries),
                },
            )

    async def revoke_all_by_cn(self, common_name: str) -> list[int]:
        """Revoke every pair ever issued for a common name.

        Not atomic: serials revoked before a failure stay revoked.

        Returns:
            The serials that were revoked, in revocation order.

        Raises:
            StorageError: If the pairs could not be listed.
            Any error raised by revoke_one, for the first failing serial.
        """
        with tracer.start_as_current_span("RevocationEngine.revoke_all_by_cn") as span:
            span.set_attribute("common_name", common_name)

            try:
                pairs = await self._storage.get_by_cn(common_name)
            except PKIError:
                raise
            except Exception as e:
                raise StorageError(f"can't get pairs for revoke: {e}") from e

            revoked: list[int] = []
            for pair in pairs:
                try:
                    await self.revoke_one(pair.serial, reason="common_name")
                except PKIError:
                    logger.error(
                        "revoke_by_cn_aborted",
                        extra={
                            "common_name": common_name,
                            "failed_serial": str(pair.serial),
                            "revoked_count": len(revoked),
                        },
                    )
                    raise
                revoked.append(pair.serial)

            span.set_attribute("revoked_count", len(revoked))
            logger.info(
                "common_name_revoked",
                extra={"common_name": common_name, "revoked_count": len(revoked)},
            )
            return revoked

    async def is_revoked(self, serial: int) -> bool:
        """Check the current CRL for a serial. No CRL means nothing is revoked."""
        _, entries = await self._load_current()
        revoked = any(entry.serial == serial for entry in entries)
        pki_metrics.record_revocation_check("revoked" if revoked else "valid")
        return revoked

    async def _fetch_record(self) -> StoredCRLRecord:
        try:
            return await self._crl_store.get()
        except PKIError:
            raise
        except Exception as e:
            raise StorageError(f"fetching crl: {e}") from e

    async def _load_current(self) -> tuple[StoredCRLRecord | None, list[RevokedEntry]]:
        try:
            record = await self._fetch_record()
        except NotFoundError:
            return None, []

        crl = load_crl(record.pem)
        entries = [
            RevokedEntry(serial=revoked.serial_number, revoked_at=revoked.revocation_date_utc)
            for revoked in crl
        ]
        return record, entries

    def _sign(
        self,
        entries: list[RevokedEntry],
        ca_key,
        ca_cert: x509.Certificate,
        now: datetime,
        crl_number: int,
    ) -> x509.CertificateRevocationList:
        try:
            builder = (
                x509.CertificateRevocationListBuilder()
                .issuer_name(ca_cert.subject)
                .last_update(now)
                .next_update(now + self.CRL_VALIDITY)
                .add_extension(x509.CRLNumber(crl_number), critical=False)
                .add_extension(
                    x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()),
                    critical=False,
                )
            )
            for entry in entries:
                builder = builder.add_revoked_certificate(
                    x509.RevokedCertificateBuilder()
                    .serial_number(entry.serial)
                    .revocation_date(entry.revoked_at)
                    .build()
                )
            return builder.sign(ca_key, hashes.SHA256())
        except (ValueError, TypeError) as e:
            logger.error("crl_generation_failed", extra={"error": str(e)})
            raise GenerationError(f"can't create crl: {e}") from e

    async def _publish(self, pem: bytes, expected_version: int | None) -> None:
        try:
            await self._crl_store.put(pem, expected_version)
        except CRLConflictError:
            pki_metrics.record_crl_publish_failed()
            logger.warning(
                "crl_publish_conflict",
                extra={"expected_version": expected_version},
            )
            raise
        except PKIError:
            pki_metrics.record_crl_publish_failed()
            raise
        except Exception as e:
            pki_metrics.record_crl_publish_failed()
            raise StorageError(f"can't put new crl: {e}") from e

"""Tests for the revocation engine and CRL maintenance."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from cryptography import x509

from pki.ca.revocation import RevocationEngine, deduplicate
from pki.domain.errors import (
    AuthorityUnavailableError,
    CRLConflictError,
    GenerationError,
    NotFoundError,
    StorageError,
)
from pki.domain.pairs import RevokedEntry
from pki.domain.states import CertificateStatus
from pki.storage.memory import InMemoryCRLStore


class InterferingCRLStore(InMemoryCRLStore):
    """CRL store that lets another writer slip in before the next put."""

    def __init__(self) -> None:
        super().__init__()
        self.interfere = False

    async def put(self, pem: bytes, expected_version: int | None) -> int:
        if self.interfere and self._record is not None:
            self.interfere = False
            await super().put(self._record.pem, self._record.version)
        return await super().put(pem, expected_version)


class YieldingCRLStore(InMemoryCRLStore):
    """CRL store that suspends before every put, like a real database round trip."""

    async def put(self, pem: bytes, expected_version: int | None) -> int:
        await asyncio.sleep(0)
        return await super().put(pem, expected_version)


class TestDeduplicate:
    """Tests for deduplicate."""

    def test_keeps_first_entry_per_serial(self):
        """Test that the earliest entry for a serial wins."""
        first = datetime(2024, 1, 1, tzinfo=timezone.utc)
        later = first + timedelta(days=1)

        entries = deduplicate(
            [RevokedEntry(7, first), RevokedEntry(8, first), RevokedEntry(7, later)]
        )

        assert entries == [RevokedEntry(7, first), RevokedEntry(8, first)]

    def test_full_precision_serials(self):
        """Test that serials differing only beyond 64 bits stay distinct."""
        now = datetime.now(timezone.utc)
        big = 2**80

        entries = deduplicate([RevokedEntry(big, now), RevokedEntry(big + 1, now)])

        assert [entry.serial for entry in entries] == [big, big + 1]


class TestEmptyCRL:
    """Behaviour before anything has been revoked."""

    @pytest.mark.asyncio
    async def test_get_crl_not_found(self, service):
        """Test that no CRL exists before the first revocation."""
        with pytest.raises(NotFoundError):
            await service.get_crl()

    @pytest.mark.asyncio
    async def test_nothing_revoked(self, service):
        """Test that a missing CRL means every serial is valid."""
        assert await service.is_revoked(1) is False
        assert await service.revoked_entries() == []
        assert await service.status(1) is CertificateStatus.ISSUED


class TestRevokeOne:
    """Tests for RevocationEngine.revoke_one."""

    @pytest.mark.asyncio
    async def test_revoked_serial_reported(self, service, authority):
        """Test that a revoked serial shows up in status checks."""
        await service.revoke_one(42)

        assert await service.is_revoked(42) is True
        assert await service.is_revoked(43) is False
        assert await service.status(42) is CertificateStatus.REVOKED

    @pytest.mark.asyncio
    async def test_crl_signed_by_authority(self, service, authority):
        """Test that the published CRL verifies against the authority key."""
        await service.revoke_one(42)

        crl = await service.get_crl()
        ca_cert = authority.certificate()

        assert crl.issuer == ca_cert.subject
        assert crl.is_signature_valid(ca_cert.public_key())
        assert crl.get_revoked_certificate_by_serial_number(42) is not None

    @pytest.mark.asyncio
    async def test_crl_pem_transport_form(self, service, authority):
        """Test the PEM block type of the stored CRL."""
        await service.revoke_one(42)

        pem = await service.get_crl_pem()

        assert pem.startswith(b"-----BEGIN X509 CRL-----")

    @pytest.mark.asyncio
    async def test_crl_number_increments(self, service, authority):
        """Test that each publication carries a larger CRL number."""
        await service.revoke_one(1)
        first = (await service.get_crl()).extensions.get_extension_for_class(x509.CRLNumber)
        await service.revoke_one(2)
        second = (await service.get_crl()).extensions.get_extension_for_class(x509.CRLNumber)

        assert second.value.crl_number == first.value.crl_number + 1

    @pytest.mark.asyncio
    async def test_revoke_is_idempotent(self, service, authority):
        """Test that revoking twice keeps a single entry with the first date."""
        await service.revoke_one(42)
        [original] = await service.revoked_entries()

        await service.revoke_one(42)
        entries = await service.revoked_entries()

        assert entries == [original]

    @pytest.mark.asyncio
    async def test_large_serials_keep_full_precision(self, service, authority):
        """Test that serials beyond 64 bits are stored and matched exactly."""
        big = 2**100

        await service.revoke_one(big)
        await service.revoke_one(big + 1)
        await service.revoke_one(big)

        assert [entry.serial for entry in await service.revoked_entries()] == [big, big + 1]
        assert await service.is_revoked(big + 2) is False

    @pytest.mark.asyncio
    async def test_no_authority_leaves_crl_absent(self, service):
        """Test that revocation without an authority publishes nothing."""
        with pytest.raises(AuthorityUnavailableError):
            await service.revoke_one(42)

        with pytest.raises(NotFoundError):
            await service.get_crl_pem()

    @pytest.mark.asyncio
    async def test_signed_by_highest_serial_authority(self, service, authority):
        """Test that the CRL is signed by the authority with the highest serial."""
        rotated = await service.create_authority()

        await service.revoke_one(42)
        crl = await service.get_crl()

        assert rotated.serial > authority.serial
        assert crl.is_signature_valid(rotated.certificate().public_key())
        assert not crl.is_signature_valid(authority.certificate().public_key())

    @pytest.mark.asyncio
    async def test_records_metrics(self, service, authority):
        """Test that revocation and CRL size are recorded."""
        with patch("pki.ca.revocation.pki_metrics") as mock_metrics:
            await service.revoke_one(42)

        mock_metrics.record_certificate_revoked.assert_called_once_with("serial")
        mock_metrics.record_crl_published.assert_called_once_with(1)

    @pytest.mark.asyncio
    async def test_records_common_name_reason(self, service, authority):
        """Test that revoking by name labels each revocation with its reason."""
        await service.issue_certificate("svc-a", False)
        await service.issue_certificate("svc-a", True)

        with patch("pki.ca.revocation.pki_metrics") as mock_metrics:
            await service.revoke_all_by_cn("svc-a")

        assert mock_metrics.record_certificate_revoked.call_count == 2
        mock_metrics.record_certificate_revoked.assert_called_with("common_name")


class TestConcurrency:
    """Concurrent revocations must never lose an update."""

    @pytest.mark.asyncio
    async def test_concurrent_revocations_all_recorded(self, service, authority):
        """Test that every serial revoked concurrently ends up in the CRL."""
        serials = list(range(100, 120))

        await asyncio.gather(*(service.revoke_one(serial) for serial in serials))

        recorded = {entry.serial for entry in await service.revoked_entries()}
        assert recorded == set(serials)

    @pytest.mark.asyncio
    async def test_concurrent_revocations_with_suspending_store(self, service, authority):
        """Test that revocations interleaving at the CRL write are serialized."""
        engine = RevocationEngine(service.storage, YieldingCRLStore(), service.selector)
        serials = list(range(200, 220))

        await asyncio.gather(*(engine.revoke_one(serial) for serial in serials))

        recorded = {entry.serial for entry in await engine.revoked_entries()}
        assert recorded == set(serials)

    @pytest.mark.asyncio
    async def test_conflicting_writer_detected(self, service, authority):
        """Test that a concurrent replace is rejected and the old CRL kept."""
        store = InterferingCRLStore()
        engine = RevocationEngine(service.storage, store, service.selector)
        await engine.revoke_one(1)
        before = await engine.get_crl_pem()

        store.interfere = True
        with pytest.raises(CRLConflictError) as exc_info:
            await engine.revoke_one(2)

        assert isinstance(exc_info.value, StorageError)
        assert exc_info.value.expected_version == 1
        assert exc_info.value.actual_version == 2
        assert await engine.get_crl_pem() == before
        assert await engine.is_revoked(2) is False


class TestRevokeByCommonName:
    """Tests for RevocationEngine.revoke_all_by_cn."""

    @pytest.mark.asyncio
    async def test_revokes_every_pair_for_name(self, service, authority):
        """Test that all pairs for one name are revoked and others untouched."""
        a1 = await service.issue_certificate("svc-a", False)
        a2 = await service.issue_certificate("svc-a", True)
        b1 = await service.issue_certificate("svc-b", False)

        revoked = await service.revoke_all_by_cn("svc-a")

        assert revoked == [a1.serial, a2.serial]
        assert await service.is_revoked(a1.serial)
        assert await service.is_revoked(a2.serial)
        assert not await service.is_revoked(b1.serial)

    @pytest.mark.asyncio
    async def test_unknown_name_revokes_nothing(self, service, authority):
        """Test that a name with no pairs is a no-op."""
        assert await service.revoke_all_by_cn("nobody") == []

        with pytest.raises(NotFoundError):
            await service.get_crl()

    @pytest.mark.asyncio
    async def test_listing_failure_wrapped(self, service):
        """Test that a storage crash while listing pairs becomes StorageError."""
        storage = MagicMock()
        storage.get_by_cn = AsyncMock(side_effect=RuntimeError("connection reset"))
        engine = RevocationEngine(storage, InMemoryCRLStore(), service.selector)

        with pytest.raises(StorageError, match="connection reset"):
            await engine.revoke_all_by_cn("svc-a")

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_earlier_revocations(self, service, authority):
        """Test that revocation stops at the first failure without undoing prior work."""
        a1 = await service.issue_certificate("svc-a", False)
        await service.issue_certificate("svc-a", False)

        original = service.revocation.revoke_one
        calls = []

        async def fail_second(serial, **kwargs):
            calls.append(serial)
            if len(calls) == 2:
                raise GenerationError("signing failed")
            await original(serial, **kwargs)

        with patch.object(service.revocation, "revoke_one", side_effect=fail_second):
            with pytest.raises(GenerationError):
                await service.revoke_all_by_cn("svc-a")

        assert await service.is_revoked(a1.serial)


class TestStorageFailures:
    """Failures of the CRL store surface as StorageError."""

    @pytest.mark.asyncio
    async def test_read_failure_wrapped(self, service):
        """Test that a crashing CRL store is reported as StorageError."""
        crl_store = MagicMock()
        crl_store.get = AsyncMock(side_effect=RuntimeError("timeout"))
        engine = RevocationEngine(service.storage, crl_store, service.selector)

        with pytest.raises(StorageError, match="timeout"):
            await engine.is_revoked(1)

    @pytest.mark.asyncio
    async def test_write_failure_keeps_previous_crl(self, service, authority):
        """Test that a failed put leaves the stored CRL unchanged."""
        await service.revoke_one(1)
        before = await service.get_crl_pem()

        with patch.object(
            service.revocation._crl_store, "put", AsyncMock(side_effect=RuntimeError("io"))
        ):
            with pytest.raises(StorageError, match="can't put new crl"):
                await service.revoke_one(2)

        assert await service.get_crl_pem() == before

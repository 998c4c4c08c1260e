"""Authority lifecycle: creating self-signed authority pairs and selecting signers.

Authority pairs are ordinary key/certificate pairs stored under the reserved
common name "ca". Rotation means creating another one; nothing is deleted.
Which pair signs what is decided by an AuthoritySelector:

- leaf certificates are signed by the most recently created authority
- the CRL is signed by the authority with the highest serial
"""

import logging
from datetime import datetime, timedelta, timezone

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import NameOID
from opentelemetry import trace

from pki.ca.crypto import encode_certificate, encode_private_key, generate_rsa_key
from pki.domain.errors import (
    AllocationError,
    AuthorityUnavailableError,
    GenerationError,
    NotFoundError,
    PKIError,
    StorageError,
)
from pki.domain.pairs import X509Pair
from pki.domain.ports import AuthoritySelector, KeyStorage, SerialAllocator
from pki.domain.states import AUTHORITY_CN
from pki.metrics import pki_metrics
from shared.config import settings

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# NotBefore is backdated to absorb clock skew between issuer and verifiers
CLOCK_SKEW_ALLOWANCE = timedelta(minutes=10)


def build_subject(common_name: str) -> x509.Name:
    """Apply the configured subject template with the given common name."""
    attributes = []
    if settings.PKI_SUBJECT_COUNTRY:
        attributes.append(x509.NameAttribute(NameOID.COUNTRY_NAME, settings.PKI_SUBJECT_COUNTRY))
    if settings.PKI_SUBJECT_ORGANIZATION:
        attributes.append(
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, settings.PKI_SUBJECT_ORGANIZATION)
        )
    if settings.PKI_SUBJECT_ORGANIZATIONAL_UNIT:
        attributes.append(
            x509.NameAttribute(
                NameOID.ORGANIZATIONAL_UNIT_NAME, settings.PKI_SUBJECT_ORGANIZATIONAL_UNIT
            )
        )
    attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, common_name))
    return x509.Name(attributes)


async def allocate_serial(serials: SerialAllocator) -> int:
    """Get a fresh serial from the allocator.

    Raises:
        AllocationError: If the allocator fails or returns an unusable value.
    """
    try:
        serial = await serials.next()
    except AllocationError:
        raise
    except Exception as e:
        raise AllocationError(f"allocating serial: {e}") from e

    if not isinstance(serial, int) or serial <= 0:
        raise AllocationError(f"allocator returned invalid serial {serial!r}")
    return serial


async def store_pair(storage: KeyStorage, pair: X509Pair) -> None:
    """Persist a freshly created pair.

    Raises:
        StorageError: If the storage rejects or fails to persist the pair.
    """
    try:
        await storage.put(pair)
    except PKIError:
        raise
    except Exception as e:
        raise StorageError(f"storing pair {pair.common_name!r} serial {pair.serial}: {e}") from e


class StorageAuthoritySelector:
    """AuthoritySelector backed by the key storage queries."""

    def __init__(self, storage: KeyStorage) -> None:
        self._storage = storage

    async def for_issuance(self) -> X509Pair:
        """Most recently stored authority pair."""
        try:
            return await self._storage.get_last_by_cn(AUTHORITY_CN)
        except NotFoundError as e:
            raise AuthorityUnavailableError("no authority pair exists") from e
        except PKIError:
            raise
        except Exception as e:
            raise StorageError(f"fetching CA: {e}") from e

    async def for_crl(self) -> X509Pair:
        """Authority pair with the numerically highest serial."""
        pairs = await self.all()
        if not pairs:
            raise AuthorityUnavailableError("no authority pair exists")
        return max(pairs, key=lambda pair: pair.serial)

    async def all(self) -> list[X509Pair]:
        try:
            return await self._storage.get_by_cn(AUTHORITY_CN)
        except PKIError:
            raise
        except Exception as e:
            raise StorageError(f"fetching CA: {e}") from e


class AuthorityManager:
    """Creates authority pairs and answers which one is current.

    Authority key usage: Digital Signature, Certificate Sign, CRL Sign.
    Validity: now() - 10 minutes to now() + PKI_CA_VALIDITY_YEARS.
    """

    def __init__(
        self,
        storage: KeyStorage,
        serials: SerialAllocator,
        selector: AuthoritySelector | None = None,
        *,
        validity_years: int | None = None,
        key_size: int | None = None,
    ) -> None:
        self._storage = storage
        self._serials = serials
        self.selector = selector or StorageAuthoritySelector(storage)
        self._validity_years = validity_years or settings.PKI_CA_VALIDITY_YEARS
        self._key_size = key_size or settings.PKI_CA_KEY_SIZE

    async def create_authority(self) -> X509Pair:
        """Generate and persist a new self-signed authority pair.

        Raises:
            GenerationError: If key or certificate construction fails.
            AllocationError: If no serial could be allocated.
            StorageError: If the pair could not be persisted.
        """
        with tracer.start_as_current_span("AuthorityManager.create_authority") as span:
            key = generate_rsa_key(self._key_size)
            serial = await allocate_serial(self._serials)
            span.set_attribute("serial", str(serial))

            now = datetime.now(timezone.utc)
            not_after = now + timedelta(days=365 * self._validity_years)
            subject = issuer = build_subject(AUTHORITY_CN)

            try:
                certificate = (
                    x509.CertificateBuilder()
                    .subject_name(subject)
                    .issuer_name(issuer)
                    .public_key(key.public_key())
                    .serial_number(serial)
                    .not_valid_before(now - CLOCK_SKEW_ALLOWANCE)
                    .not_valid_after(not_after)
                    .add_extension(
                        x509.BasicConstraints(ca=True, path_length=None),
                        critical=True,
                    )
                    .add_extension(
                        x509.KeyUsage(
                            digital_signature=True,
                            key_cert_sign=True,
                            crl_sign=True,
                            key_encipherment=False,
                            content_commitment=False,
                            data_encipherment=False,
                            key_agreement=False,
                            encipher_only=False,
                            decipher_only=False,
                        ),
                        critical=True,
                    )
                    .add_extension(
                        x509.SubjectKeyIdentifier.from_public_key(key.public_key()),
                        critical=False,
                    )
                    .sign(key, hashes.SHA256())
                )
            except (ValueError, TypeError) as e:
                logger.error("authority_generation_failed", extra={"error": str(e)})
                raise GenerationError(f"can't generate ca cert: {e}") from e

            pair = X509Pair(
                key_pem=encode_private_key(key),
                cert_pem=encode_certificate(certificate),
                common_name=AUTHORITY_CN,
                serial=serial,
            )
            await store_pair(self._storage, pair)

            pki_metrics.record_authority_created()
            logger.info(
                "authority_created",
                extra={"serial": str(serial), "not_after": not_after.isoformat()},
            )
            return pair

    async def current_signing_authority(self) -> X509Pair:
        """Authority pair that signs new leaf certificates.

        Raises:
            AuthorityUnavailableError: If no authority pair exists yet.
        """
        return await self.selector.for_issuance()

    async def authority_for_crl(self) -> X509Pair:
        """Authority pair that signs the CRL.

        Raises:
            AuthorityUnavailableError: If no authority pair exists yet.
        """
        return await self.selector.for_crl()

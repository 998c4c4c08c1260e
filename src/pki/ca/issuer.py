"""X.509 leaf certificate issuance for client and server roles.

Generates leaf certificates signed by the current issuance authority.
"""

import ipaddress
import logging
import time
from datetime import datetime, timedelta, timezone

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import ExtendedKeyUsageOID
from opentelemetry import trace

from pki.ca import extensions
from pki.ca.authority import CLOCK_SKEW_ALLOWANCE, allocate_serial, build_subject, store_pair
from pki.ca.crypto import encode_certificate, encode_private_key, generate_rsa_key, load_certificate
from pki.domain.errors import AuthorityCorruptError, DecodeError, GenerationError
from pki.domain.pairs import X509Pair
from pki.domain.ports import AuthoritySelector, KeyStorage, SerialAllocator
from pki.domain.states import AUTHORITY_CN, CertificateRole
from pki.metrics import pki_metrics
from shared.config import settings

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def _key_usage(role: CertificateRole) -> x509.KeyUsage:
    return x509.KeyUsage(
        digital_signature=True,
        key_agreement=True,
        key_encipherment=role is CertificateRole.SERVER,
        key_cert_sign=False,
        crl_sign=False,
        content_commitment=False,
        data_encipherment=False,
        encipher_only=False,
        decipher_only=False,
    )


_EXTENDED_KEY_USAGE = {
    CertificateRole.CLIENT: ExtendedKeyUsageOID.CLIENT_AUTH,
    CertificateRole.SERVER: ExtendedKeyUsageOID.SERVER_AUTH,
}


class CertificateIssuer:
    """Issues leaf certificates signed by the issuance authority.

    Certificate attributes:
    - Subject: subject template with CN=<common_name>
    - Validity: now() - 10 minutes to now() + 99 years; revocation is the
      only way to deactivate a leaf
    - SAN: DNS=<common_name> plus PKI_LEAF_SAN_IPS
    - Client: Digital Signature, Key Agreement; EKU Client Authentication
    - Server: Digital Signature, Key Agreement, Key Encipherment; EKU Server Authentication
    - Role marker and group metadata extensions (see pki.ca.extensions)
    """

    LEAF_VALIDITY = timedelta(days=365 * 99)

    def __init__(
        self,
        storage: KeyStorage,
        serials: SerialAllocator,
        selector: AuthoritySelector,
        *,
        key_size: int | None = None,
        san_ips: list[str] | None = None,
    ) -> None:
        self._storage = storage
        self._serials = serials
        self._selector = selector
        self._key_size = key_size or settings.PKI_LEAF_KEY_SIZE
        self._san_ips = settings.leaf_san_ips if san_ips is None else san_ips

    async def issue(
        self,
        common_name: str,
        is_server: bool,
        groups: list[str] | None = None,
    ) -> X509Pair:
        """Issue and persist a new leaf certificate."""
        pair, _ = await self.issue_with_authority(common_name, is_server, groups)
        return pair

    async def issue_with_authority(
        self,
        common_name: str,
        is_server: bool,
        groups: list[str] | None = None,
    ) -> tuple[X509Pair, X509Pair]:
        """Issue and persist a new leaf certificate.

        Args:
            common_name: Identity of the leaf; also its DNS SAN.
            is_server: Server role when True, client role otherwise.
            groups: Group tags carried as application metadata.

        Returns:
            The leaf pair and the authority pair that signed it. Rotation
            after signing does not change the returned authority.

        Raises:
            AuthorityUnavailableError: If no authority pair exists.
            AuthorityCorruptError: If the authority pair cannot be decoded.
            GenerationError: If key or certificate construction fails.
            AllocationError: If no serial could be allocated.
            StorageError: If the pair could not be persisted.
        """
        role = CertificateRole.SERVER if is_server else CertificateRole.CLIENT
        groups = list(groups or [])

        with tracer.start_as_current_span("CertificateIssuer.issue") as span:
            span.set_attribute("common_name", common_name)
            span.set_attribute("role", role.value)

            start_time = time.time()

            if not common_name:
                raise GenerationError("common name must not be empty")
            if common_name == AUTHORITY_CN:
                raise GenerationError(f"common name {AUTHORITY_CN!r} is reserved for authorities")

            authority = await self._selector.for_issuance()
            try:
                ca_key, ca_cert = authority.decode()
            except DecodeError as e:
                logger.error(
                    "authority_decode_failed",
                    extra={"serial": str(authority.serial), "error": str(e)},
                )
                raise AuthorityCorruptError(f"can't parse ca pair: {e}") from e

            key = generate_rsa_key(self._key_size)
            serial = await allocate_serial(self._serials)
            span.set_attribute("serial", str(serial))
            span.set_attribute("authority_serial", str(authority.serial))

            now = datetime.now(timezone.utc)
            try:
                builder = (
                    x509.CertificateBuilder()
                    .subject_name(build_subject(common_name))
                    .issuer_name(ca_cert.subject)
                    .public_key(key.public_key())
                    .serial_number(serial)
                    .not_valid_before(now - CLOCK_SKEW_ALLOWANCE)
                    .not_valid_after(now + self.LEAF_VALIDITY)
                    .add_extension(
                        x509.BasicConstraints(ca=False, path_length=None),
                        critical=True,
                    )
                    .add_extension(_key_usage(role), critical=True)
                    .add_extension(
                        x509.ExtendedKeyUsage([_EXTENDED_KEY_USAGE[role]]),
                        critical=False,
                    )
                    .add_extension(
                        x509.SubjectAlternativeName(self._alternative_names(common_name)),
                        critical=False,
                    )
                    .add_extension(
                        x509.SubjectKeyIdentifier.from_public_key(key.public_key()),
                        critical=False,
                    )
                    .add_extension(
                        x509.AuthorityKeyIdentifier.from_issuer_public_key(
                            ca_key.public_key()  # type: ignore[arg-type]
                        ),
                        critical=False,
                    )
                    .add_extension(extensions.role_extension(role), critical=False)
                )
                if groups:
                    builder = builder.add_extension(
                        extensions.groups_extension(groups), critical=False
                    )

                # Sign with CA's private key
                certificate = builder.sign(ca_key, hashes.SHA256())  # type: ignore[arg-type]
            except (ValueError, TypeError) as e:
                logger.error(
                    "certificate_generation_failed",
                    extra={"common_name": common_name, "error": str(e)},
                )
                raise GenerationError(f"certificate cannot be created: {e}") from e

            pair = X509Pair(
                key_pem=encode_private_key(key),
                cert_pem=encode_certificate(certificate),
                common_name=common_name,
                serial=serial,
            )
            await store_pair(self._storage, pair)

            duration = time.time() - start_time
            pki_metrics.record_certificate_issued(role.value, duration)

            logger.info(
                "certificate_issued",
                extra={
                    "common_name": common_name,
                    "role": role.value,
                    "serial": str(serial),
                    "authority_serial": str(authority.serial),
                    "groups": groups,
                    "duration_seconds": duration,
                },
            )
            return pair, authority

    def extract_groups(self, certificate: x509.Certificate | bytes | str) -> list[str]:
        """Read group tags back out of a certificate.

        Raises:
            NoGroupsError: If the certificate carries no groups.
            DecodeError: If PEM input or the group extension is malformed.
        """
        if not isinstance(certificate, x509.Certificate):
            certificate = load_certificate(certificate)
        return extensions.read_groups(certificate)

    def read_role(self, certificate: x509.Certificate | bytes | str) -> CertificateRole:
        """Read the client/server role marker of a certificate."""
        if not isinstance(certificate, x509.Certificate):
            certificate = load_certificate(certificate)
        return extensions.read_role(certificate)

    def _alternative_names(self, common_name: str) -> list[x509.GeneralName]:
        names: list[x509.GeneralName] = [x509.DNSName(common_name)]
        for ip in self._san_ips:
            names.append(x509.IPAddress(ipaddress.ip_address(ip)))
        return names

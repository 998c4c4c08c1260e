"""OpenTelemetry metrics for the PKI module."""

from collections.abc import Iterator

from opentelemetry import metrics

# Get meter for pki module
meter = metrics.get_meter("pki")

# Authority counters
authorities_created_total = meter.create_counter(
    name="pki_authorities_created_total",
    description="Total self-signed authority pairs created",
    unit="1",
)

# Issuance counters
certificates_issued_total = meter.create_counter(
    name="pki_certificates_issued_total",
    description="Total leaf certificates issued",
    unit="1",
)

certificate_issuance_duration = meter.create_histogram(
    name="pki_certificate_issuance_duration_seconds",
    description="Leaf certificate issuance duration in seconds",
    unit="s",
)

# Revocation counters
certificates_revoked_total = meter.create_counter(
    name="pki_certificates_revoked_total",
    description="Total revocation requests applied to the CRL",
    unit="1",
)

revocation_checks_total = meter.create_counter(
    name="pki_revocation_checks_total",
    description="Total revocation status checks",
    unit="1",
)

crl_publish_failures_total = meter.create_counter(
    name="pki_crl_publish_failures_total",
    description="Total CRL updates that failed to be stored",
    unit="1",
)

# CRL size gauge - updated on every publish
_crl_entries: int | None = None


def _get_crl_entries(
    options: metrics.CallbackOptions,
) -> Iterator[metrics.Observation]:
    """Callback to report the number of entries in the current CRL."""
    if _crl_entries is not None:
        yield metrics.Observation(_crl_entries, {})


crl_entries_gauge = meter.create_observable_gauge(
    name="pki_crl_entries",
    description="Revoked serials in the current CRL",
    unit="1",
    callbacks=[_get_crl_entries],
)


class PKIMetrics:
    """Facade for PKI metrics with proper labels."""

    def record_authority_created(self) -> None:
        """Record a new authority pair."""
        authorities_created_total.add(1)

    def record_certificate_issued(self, role: str, duration_seconds: float) -> None:
        """Record leaf issuance. Labels: role=client|server"""
        certificates_issued_total.add(1, {"role": role})
        certificate_issuance_duration.record(duration_seconds, {"role": role})

    def record_certificate_revoked(self, reason: str) -> None:
        """Record revocation. Labels: reason=serial|common_name"""
        certificates_revoked_total.add(1, {"reason": reason})

    def record_revocation_check(self, result: str) -> None:
        """Record revocation check. Labels: result=revoked|valid"""
        revocation_checks_total.add(1, {"result": result})

    def record_crl_published(self, entries: int) -> None:
        """Record the size of a freshly stored CRL."""
        global _crl_entries
        _crl_entries = entries

    def record_crl_publish_failed(self) -> None:
        """Record a CRL update that could not be stored."""
        crl_publish_failures_total.add(1)


# Singleton instance
pki_metrics = PKIMetrics()

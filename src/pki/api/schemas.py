"""Pydantic schemas for PKI API request/response validation."""

from datetime import datetime

from pydantic import BaseModel, Field

from pki.domain.pairs import X509Pair


class AuthorityResponse(BaseModel):
    """Public half of an authority pair."""

    serial_number: str
    certificate_pem: str

    @classmethod
    def from_pair(cls, pair: X509Pair) -> "AuthorityResponse":
        return cls(serial_number=str(pair.serial), certificate_pem=pair.cert_pem.decode("ascii"))


class IssueCertificateRequest(BaseModel):
    """Request body for issuing a leaf certificate."""

    common_name: str = Field(..., min_length=1, max_length=64)
    is_server: bool = False
    groups: list[str] = Field(default_factory=list)


class CertificateBundleResponse(BaseModel):
    """Freshly issued leaf pair. The private key is only ever returned here."""

    common_name: str
    serial_number: str
    role: str
    thumbprint: str
    certificate_pem: str
    private_key_pem: str
    ca_certificate_pem: str


class CertificateStatusResponse(BaseModel):
    serial_number: str
    status: str


class RevokeByCommonNameRequest(BaseModel):
    common_name: str = Field(..., min_length=1, max_length=64)


class RevokeResponse(BaseModel):
    revoked_serials: list[str]


class ExtractGroupsRequest(BaseModel):
    certificate_pem: str


class GroupsResponse(BaseModel):
    groups: list[str]


class RevokedEntryResponse(BaseModel):
    serial_number: str
    revoked_at: datetime


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    code: str
    detail: str | None = None

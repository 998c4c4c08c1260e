"""Leaf certificate API endpoints: issuance, status, revocation, groups."""

from fastapi import APIRouter, Depends, HTTPException, status

from pki.api.auth import require_operator
from pki.api.dependencies import get_pki_service
from pki.api.schemas import (
    CertificateBundleResponse,
    CertificateStatusResponse,
    ExtractGroupsRequest,
    GroupsResponse,
    IssueCertificateRequest,
    RevokeByCommonNameRequest,
    RevokeResponse,
)
from pki.ca.crypto import compute_thumbprint
from pki.domain.errors import (
    AuthorityUnavailableError,
    CRLConflictError,
    DecodeError,
    GenerationError,
    NoGroupsError,
)
from pki.domain.states import CertificateRole
from pki.services.pki_service import PKIService

router = APIRouter(prefix="/api/certificates", tags=["certificates"])


def parse_serial(serial: str) -> int:
    """Parse a decimal serial number path parameter."""
    try:
        value = int(serial, 10)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid serial number: {serial!r}",
        ) from None
    if value <= 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Serial number must be positive",
        )
    return value


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=CertificateBundleResponse,
    dependencies=[Depends(require_operator)],
)
async def issue_certificate(
    body: IssueCertificateRequest,
    service: PKIService = Depends(get_pki_service),
) -> CertificateBundleResponse:
    """
    Issue a client or server leaf certificate.

    - Auth: operator API key
    - Returns: 201 Created with the key pair, certificate and signing CA
    - Errors: 409 CONFLICT (no authority yet), 422 (certificate cannot be built)
    """
    try:
        pair, authority = await service.issue_certificate_with_authority(
            body.common_name, body.is_server, body.groups
        )
    except AuthorityUnavailableError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from None
    except GenerationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)
        ) from None

    role = CertificateRole.SERVER if body.is_server else CertificateRole.CLIENT
    return CertificateBundleResponse(
        common_name=pair.common_name,
        serial_number=str(pair.serial),
        role=role.value,
        thumbprint=compute_thumbprint(pair.cert_pem),
        certificate_pem=pair.cert_pem.decode("ascii"),
        private_key_pem=pair.key_pem.decode("ascii"),
        ca_certificate_pem=authority.cert_pem.decode("ascii"),
    )


@router.get("/{serial}/status", response_model=CertificateStatusResponse)
async def get_certificate_status(
    serial: str,
    service: PKIService = Depends(get_pki_service),
) -> CertificateStatusResponse:
    """
    Revocation status of a serial number.

    - Returns "revoked" if the serial is on the CRL, "issued" otherwise
    """
    value = parse_serial(serial)
    certificate_status = await service.status(value)
    return CertificateStatusResponse(serial_number=str(value), status=certificate_status.value)


@router.post(
    "/{serial}/revoke",
    response_model=RevokeResponse,
    dependencies=[Depends(require_operator)],
)
async def revoke_certificate(
    serial: str,
    service: PKIService = Depends(get_pki_service),
) -> RevokeResponse:
    """
    Revoke one serial number. Revoking twice is harmless.

    - Auth: operator API key
    - Errors: 409 CONFLICT (no authority, or concurrent CRL update)
    """
    value = parse_serial(serial)
    try:
        await service.revoke_one(value)
    except (AuthorityUnavailableError, CRLConflictError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from None
    return RevokeResponse(revoked_serials=[str(value)])


@router.post(
    "/revoke-by-cn",
    response_model=RevokeResponse,
    dependencies=[Depends(require_operator)],
)
async def revoke_by_common_name(
    body: RevokeByCommonNameRequest,
    service: PKIService = Depends(get_pki_service),
) -> RevokeResponse:
    """
    Revoke every certificate ever issued for a common name.

    - Auth: operator API key
    - Not atomic: on error, serials revoked so far stay revoked
    - Errors: 409 CONFLICT (no authority, or concurrent CRL update)
    """
    try:
        serials = await service.revoke_all_by_cn(body.common_name)
    except (AuthorityUnavailableError, CRLConflictError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from None
    return RevokeResponse(revoked_serials=[str(serial) for serial in serials])


@router.post("/groups", response_model=GroupsResponse)
async def extract_groups(
    body: ExtractGroupsRequest,
    service: PKIService = Depends(get_pki_service),
) -> GroupsResponse:
    """
    Read the group tags out of a PEM certificate.

    - Errors: 400 BAD_REQUEST (malformed certificate), 404 NOT_FOUND (no groups)
    """
    try:
        groups = service.extract_groups(body.certificate_pem)
    except DecodeError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from None
    except NoGroupsError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from None
    return GroupsResponse(groups=groups)

"""Certificate revocation list endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Response, status

from pki.api.dependencies import get_pki_service
from pki.api.schemas import RevokedEntryResponse
from pki.domain.errors import NotFoundError
from pki.services.pki_service import PKIService

router = APIRouter(prefix="/api/crl", tags=["crl"])

CRL_MEDIA_TYPE = "application/pkix-crl"


@router.get("", response_class=Response)
async def get_crl(service: PKIService = Depends(get_pki_service)) -> Response:
    """
    Download the current signed CRL (PEM).

    - Errors: 404 NOT_FOUND if nothing has been revoked yet
    """
    try:
        pem = await service.get_crl_pem()
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from None
    return Response(content=pem, media_type=CRL_MEDIA_TYPE)


@router.get("/entries", response_model=list[RevokedEntryResponse])
async def list_crl_entries(
    service: PKIService = Depends(get_pki_service),
) -> list[RevokedEntryResponse]:
    """List the revoked serials and their revocation times."""
    entries = await service.revoked_entries()
    return [
        RevokedEntryResponse(serial_number=str(entry.serial), revoked_at=entry.revoked_at)
        for entry in entries
    ]

"""Authority management API endpoints."""

from fastapi import APIRouter, Depends, HTTPException, status

from pki.api.auth import require_operator
from pki.api.dependencies import get_pki_service
from pki.api.schemas import AuthorityResponse
from pki.domain.errors import AuthorityUnavailableError
from pki.services.pki_service import PKIService

router = APIRouter(prefix="/api/authorities", tags=["authorities"])


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=AuthorityResponse,
    dependencies=[Depends(require_operator)],
)
async def create_authority(
    service: PKIService = Depends(get_pki_service),
) -> AuthorityResponse:
    """
    Create (rotate to) a new self-signed authority.

    - Auth: operator API key
    - New leaf certificates are signed by this authority from now on
    """
    pair = await service.create_authority()
    return AuthorityResponse.from_pair(pair)


@router.get("/current", response_model=AuthorityResponse)
async def get_current_authority(
    service: PKIService = Depends(get_pki_service),
) -> AuthorityResponse:
    """
    Get the authority certificate currently signing leaf certificates.

    - Errors: 404 NOT_FOUND if no authority exists yet
    """
    try:
        pair = await service.current_signing_authority()
    except AuthorityUnavailableError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from None
    return AuthorityResponse.from_pair(pair)

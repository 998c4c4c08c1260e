"""Bootstrap service for first-run initialization."""

import logging

from pki.domain.errors import AuthorityUnavailableError
from pki.domain.pairs import X509Pair
from pki.services.pki_service import PKIService
from shared.config import settings

logger = logging.getLogger(__name__)


async def bootstrap_authority_if_needed(service: PKIService) -> X509Pair | None:
    """
    Create the first authority pair if none exists.

    Environment variables:
    - PKI_BOOTSTRAP_AUTHORITY: Set to false to require an explicit
      POST /api/authorities before anything can be issued

    Returns:
        The created authority pair, or None if skipped
    """
    if not settings.PKI_BOOTSTRAP_AUTHORITY:
        logger.debug("bootstrap_skipped", extra={"reason": "disabled"})
        return None

    try:
        existing = await service.current_signing_authority()
    except AuthorityUnavailableError:
        pass
    else:
        logger.debug(
            "bootstrap_skipped",
            extra={"reason": "authority_exists", "serial": str(existing.serial)},
        )
        return None

    logger.info("bootstrap_started")
    authority = await service.create_authority()
    logger.info("bootstrap_authority_created", extra={"serial": str(authority.serial)})
    return authority

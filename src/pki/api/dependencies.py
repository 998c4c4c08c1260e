"""Process-wide PKI service shared by the API routers."""

from pki.services.pki_service import PKIService

# Global PKI service instance, set during app startup
_pki_service: PKIService | None = None


def set_pki_service(service: PKIService) -> None:
    """Set the global PKI service instance."""
    global _pki_service
    _pki_service = service


def get_pki_service() -> PKIService:
    """Get the global PKI service instance."""
    if _pki_service is None:
        raise RuntimeError("PKIService not initialized")
    return _pki_service

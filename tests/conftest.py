"""Shared fixtures for PKI tests."""

import pytest
import pytest_asyncio

from pki.services.pki_service import build_in_memory_pki_service

# Smallest size that keeps signatures meaningful while keeping tests fast
TEST_KEY_SIZE = 2048


@pytest.fixture
def service():
    """In-memory PKI service without any authority."""
    return build_in_memory_pki_service(
        ca_key_size=TEST_KEY_SIZE,
        leaf_key_size=TEST_KEY_SIZE,
        san_ips=["127.0.0.1"],
    )


@pytest_asyncio.fixture
async def authority(service):
    """The first authority pair of the service fixture."""
    return await service.create_authority()

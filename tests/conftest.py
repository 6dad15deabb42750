"""Shared test configuration."""

import pytest


@pytest.fixture
def anyio_backend():
    """Run async tests on asyncio only; the engine uses asyncio primitives."""
    return "asyncio"

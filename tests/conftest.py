"""Test fixtures."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from contextlib import aclosing

import pytest
import pytest_asyncio
import structlog

from porthor.config import Config
from porthor.factory import Factory

from .support.config import configure
from .support.ldap import MockLDAP, patch_ldap


@pytest.fixture
def config() -> Config:
    """Set up and return the default test configuration.

    The default configuration talks to an OpenLDAP server with nested group
    resolution enabled. Tests that need a different directory should load
    another configuration with `~tests.support.config.configure`.

    This fixture must not be async so that it can be used by the cli tests,
    which must not be async because the click support starts its own asyncio
    loop.
    """
    return configure("openldap")


@pytest_asyncio.fixture
async def factory(
    config: Config, mock_ldap: MockLDAP
) -> AsyncIterator[Factory]:
    """Return a component factory using the mock directory.

    Note that this creates a separate factory from the one used by the cli,
    although both talk to the same mock directory.
    """
    logger = structlog.get_logger("porthor")
    factory = Factory(config.ldap, mock_ldap, logger)
    async with aclosing(factory):
        yield factory


@pytest.fixture
def mock_ldap() -> Iterator[MockLDAP]:
    """Replace the bonsai connection with a mock directory."""
    yield from patch_ldap()

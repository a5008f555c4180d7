"""Create porthor components."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing, asynccontextmanager
from typing import Self

import structlog
from structlog.stdlib import BoundLogger

from .config import Config, DirectoryConfig
from .filters import FilterBuilder
from .mapping import PrincipalMapper
from .services.access import AccessChecker
from .services.authenticate import AuthenticationService
from .services.groups import GroupMembershipResolver
from .services.search import PrincipalSearchService
from .storage.connection import BonsaiDirectoryConnection, DirectoryConnection
from .storage.ldap import LDAPStorage

__all__ = ["Factory"]


class Factory:
    """Build porthor components around a single directory connection.

    A factory and the components it creates serve one resolution flow at a
    time, since the flow re-binds the shared connection as different
    identities.

    Parameters
    ----------
    config
        Directory configuration.
    connection
        Connection to the directory. Closed by `aclose`.
    logger
        Logger to use. Defaults to the ``porthor`` logger.
    """

    @classmethod
    @asynccontextmanager
    async def standalone(
        cls, config: Config, logger: BoundLogger | None = None
    ) -> AsyncIterator[Self]:
        """Async context manager for porthor components.

        Opens a bonsai connection to the configured server and closes it on
        exit.

        Parameters
        ----------
        config
            porthor configuration.
        logger
            Logger to use. Defaults to the ``porthor`` logger.

        Yields
        ------
        Factory
            The factory. Must be used as an async context manager.

        Examples
        --------
        .. code-block:: python

           async with Factory.standalone(config) as factory:
               auth_service = factory.create_authentication_service()
               identity = await auth_service.authenticate(username, password)
        """
        if not logger:
            logger = structlog.get_logger("porthor")
        connection = BonsaiDirectoryConnection(
            str(config.ldap.url),
            logger,
            start_tls=config.ldap.start_tls,
            timeout=config.ldap.timeout,
        )
        factory = cls(config.ldap, connection, logger)
        async with aclosing(factory):
            yield factory

    def __init__(
        self,
        config: DirectoryConfig,
        connection: DirectoryConnection,
        logger: BoundLogger | None = None,
    ) -> None:
        self._config = config
        self._connection = connection
        self._logger = logger or structlog.get_logger("porthor")

    async def aclose(self) -> None:
        """Close the directory connection.

        After this method is called, the factory object is no longer valid and
        must not be used.
        """
        await self._connection.close()

    def create_authentication_service(
        self, access_checker: AccessChecker | None = None
    ) -> AuthenticationService:
        """Create a service for authenticating users.

        Parameters
        ----------
        access_checker
            Access-control decision applied to each authenticated user, if
            any.
        """
        storage = self.create_ldap_storage()
        return AuthenticationService(
            config=self._config,
            connection=self._connection,
            storage=storage,
            mapper=PrincipalMapper(self._config),
            filters=FilterBuilder(self._config),
            resolver=self._create_group_resolver(storage),
            access_checker=access_checker,
            logger=self._logger,
        )

    def create_group_resolver(self) -> GroupMembershipResolver:
        """Create a resolver for group membership."""
        return self._create_group_resolver(self.create_ldap_storage())

    def create_ldap_storage(self) -> LDAPStorage:
        """Create the storage layer over the directory connection."""
        return LDAPStorage(
            self._config,
            self._connection,
            PrincipalMapper(self._config),
            self._logger,
        )

    def create_search_service(self) -> PrincipalSearchService:
        """Create a service for searching for principals."""
        return PrincipalSearchService(
            config=self._config,
            storage=self.create_ldap_storage(),
            mapper=PrincipalMapper(self._config),
            filters=FilterBuilder(self._config),
            logger=self._logger,
        )

    def _create_group_resolver(
        self, storage: LDAPStorage
    ) -> GroupMembershipResolver:
        return GroupMembershipResolver(
            self._config, storage, FilterBuilder(self._config), self._logger
        )

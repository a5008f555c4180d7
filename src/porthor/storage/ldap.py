"""LDAP storage layer for porthor."""

from __future__ import annotations

import asyncio

import bonsai
from bonsai import LDAPSearchScope
from structlog.stdlib import BoundLogger

from ..config import DirectoryConfig
from ..constants import OBJECT_CLASS
from ..exceptions import LDAPError, ServiceAccountBindError
from ..mapping import PrincipalMapper
from ..models.ldap import DirectoryEntry, SearchRequest
from ..models.principal import Principal, PrincipalKind
from .connection import DirectoryConnection

__all__ = ["LDAPStorage"]


class LDAPStorage:
    """LDAP storage layer.

    Executes searches over a connection owned by the caller and converts the
    results into entries or principals.

    Parameters
    ----------
    config
        Configuration for LDAP searches.
    connection
        Connection to the directory server. The storage layer binds it but
        never closes it.
    mapper
        Converter from entries to principals.
    logger
        Logger for debug messages and errors.
    """

    def __init__(
        self,
        config: DirectoryConfig,
        connection: DirectoryConnection,
        mapper: PrincipalMapper,
        logger: BoundLogger,
    ) -> None:
        self._config = config
        self._conn = connection
        self._mapper = mapper
        self._logger = logger.bind(ldap_url=str(self._config.url))

    async def bind_service_account(self) -> None:
        """Bind the connection as the service account.

        Binds anonymously if no service account is configured.

        Raises
        ------
        ServiceAccountBindError
            Raised if the bind failed.
        """
        dn = self._config.service_account_dn or ""
        password = ""
        if self._config.service_account_password:
            password = self._config.service_account_password.get_secret_value()
        try:
            await self._conn.bind(dn, password)
        except (bonsai.LDAPError, asyncio.TimeoutError) as e:
            invalid = isinstance(e, bonsai.AuthenticationError)
            msg = "Cannot bind to LDAP as service account"
            self._logger.error(msg, ldap_bind_dn=dn or None, error=str(e))
            raise ServiceAccountBindError(
                msg, invalid_credentials=invalid
            ) from e

    async def search(
        self, request: SearchRequest, username: str | None = None
    ) -> list[DirectoryEntry]:
        """Perform a single search with the current bind.

        Parameters
        ----------
        request
            Search to perform.
        username
            User for which the search is being performed, for error
            reporting.

        Returns
        -------
        list of DirectoryEntry
            Matching entries. If the base of the search does not exist, this
            is the empty list rather than an error.

        Raises
        ------
        LDAPError
            Raised if the search failed.
        """
        logger = self._bind_logger(request, username)
        try:
            logger.debug("Querying LDAP")
            return await self._conn.search(request)
        except bonsai.NoSuchObjectError:
            logger.debug("LDAP search base does not exist")
            return []
        except (bonsai.LDAPError, asyncio.TimeoutError) as e:
            logger.exception("Cannot query LDAP", error=str(e))
            raise LDAPError("Error querying LDAP", username) from e

    async def search_paged(
        self, request: SearchRequest, username: str | None = None
    ) -> list[DirectoryEntry]:
        """Perform a paged search with the current bind.

        All pages are retrieved and concatenated. The page size comes from
        the configuration.

        Parameters
        ----------
        request
            Search to perform.
        username
            User for which the search is being performed, for error
            reporting.

        Returns
        -------
        list of DirectoryEntry
            Matching entries. If the base of the search does not exist, this
            is the empty list rather than an error.

        Raises
        ------
        LDAPError
            Raised if the search failed.
        """
        logger = self._bind_logger(request, username)
        page_size = self._config.page_size
        try:
            logger.debug("Querying LDAP with paging", ldap_page_size=page_size)
            return await self._conn.search_paged(request, page_size)
        except bonsai.NoSuchObjectError:
            logger.debug("LDAP search base does not exist")
            return []
        except (bonsai.LDAPError, asyncio.TimeoutError) as e:
            logger.exception("Cannot query LDAP", error=str(e))
            raise LDAPError("Error querying LDAP", username) from e

    async def search_principals(
        self,
        filter_exp: str,
        kind: PrincipalKind,
        username: str | None = None,
    ) -> list[Principal]:
        """Search for users or groups and convert them to principals.

        The connection is first bound as the service account, since an
        earlier bind as an end user may have replaced the service account
        credentials. The search covers the whole subtree under the user or
        group search base and is paged.

        Parameters
        ----------
        filter_exp
            Search filter, already escaped.
        kind
            Whether to search for users or groups.
        username
            User for which the search is being performed, for error
            reporting.

        Returns
        -------
        list of Principal
            Principals for the matching entries. Entries without the object
            class for that kind of principal are skipped.

        Raises
        ------
        LDAPError
            Raised if the bind or the search failed.
        """
        if kind == PrincipalKind.user:
            base = self._config.user_search_base
            attrs = self._config.get_user_search_attributes(OBJECT_CLASS)
            scope = self._config.user_scope
        else:
            base = self._config.group_base
            attrs = self._config.get_group_search_attributes(OBJECT_CLASS)
            scope = self._config.group_scope
        request = SearchRequest(
            base=base,
            scope=LDAPSearchScope.SUB,
            filter_exp=filter_exp,
            attributes=attrs,
        )

        await self.bind_service_account()
        entries = await self.search_paged(request, username)
        principals = []
        for entry in entries:
            external_id = self.external_id(entry, kind)
            principal = self._mapper.map(entry, external_id, scope)
            if principal:
                principals.append(principal)
            else:
                self._logger.debug(
                    "Ignoring LDAP entry of wrong object class",
                    ldap_dn=entry.dn,
                    principal_kind=kind.value,
                )
        return principals

    def external_id(self, entry: DirectoryEntry, kind: PrincipalKind) -> str:
        """Determine the external ID of an entry.

        This is the DN unless external IDs are taken from attributes, in
        which case it is the first value of the login attribute for users or
        the group DN attribute for groups, falling back on the DN.
        """
        if not self._config.external_id_from_attributes:
            return entry.dn
        if kind == PrincipalKind.user:
            attr = self._config.user_login_attribute
        else:
            attr = self._config.group_dn_attribute
        return entry.get_first(attr) or entry.dn

    def _bind_logger(
        self, request: SearchRequest, username: str | None
    ) -> BoundLogger:
        return self._logger.bind(
            ldap_attrs=request.attributes,
            ldap_base=request.base,
            ldap_scope=request.scope.name,
            ldap_search=request.filter_exp,
            user=username,
        )

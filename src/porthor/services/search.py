"""Searches for users and groups outside of a login."""

from __future__ import annotations

from bonsai import LDAPSearchScope
from structlog.stdlib import BoundLogger

from ..config import DirectoryConfig
from ..constants import OBJECT_CLASS
from ..exceptions import (
    InvalidPrincipalError,
    LDAPError,
    NotFoundError,
    PermissionDeniedError,
    ServiceAccountBindError,
)
from ..filters import FilterBuilder
from ..mapping import PrincipalMapper
from ..models.ldap import SearchRequest
from ..models.principal import Principal, PrincipalKind
from ..storage.ldap import LDAPStorage

__all__ = ["PrincipalSearchService"]


class PrincipalSearchService:
    """Find users and groups by name or principal ID.

    Used by interfaces that let an administrator pick principals, such as
    when building an allow list.

    Parameters
    ----------
    config
        Directory configuration.
    storage
        Storage layer used for searches.
    mapper
        Converter from entries to principals.
    filters
        Builder for search filters.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        config: DirectoryConfig,
        storage: LDAPStorage,
        mapper: PrincipalMapper,
        filters: FilterBuilder,
        logger: BoundLogger,
    ) -> None:
        self._config = config
        self._storage = storage
        self._mapper = mapper
        self._filters = filters
        self._logger = logger

    async def search(
        self, name: str, kind: PrincipalKind | None = None
    ) -> list[Principal]:
        """Search for principals whose names start with a prefix.

        Parameters
        ----------
        name
            Prefix to search for.
        kind
            Restrict the search to users or groups. If `None`, both are
            searched and users are returned first.

        Returns
        -------
        list of Principal
            Matching principals.

        Raises
        ------
        InvalidOptionError
            Raised if a configured search filter or attribute is invalid.
        LDAPError
            Raised if the search failed.
        """
        principals = []
        if kind in (None, PrincipalKind.user):
            search = self._filters.user_search(name)
            self._logger.debug("Searching for users", ldap_search=search)
            principals.extend(
                await self._storage.search_principals(
                    search, PrincipalKind.user
                )
            )
        if kind in (None, PrincipalKind.group):
            search = self._filters.group_search(name)
            self._logger.debug("Searching for groups", ldap_search=search)
            principals.extend(
                await self._storage.search_principals(
                    search, PrincipalKind.group
                )
            )
        return principals

    async def get_principal(self, principal_id: str) -> Principal:
        """Look up a single principal by ID.

        If the service account credentials are rejected, a principal is
        synthesized from the DN in the principal ID so that stored
        references to principals can still be displayed.

        Parameters
        ----------
        principal_id
            Principal ID of a user or group.

        Returns
        -------
        Principal
            The principal.

        Raises
        ------
        InvalidPrincipalError
            Raised if the principal ID is malformed or has an unknown scope.
        LDAPError
            Raised if the bind or search failed or more than one entry was
            found.
        NotFoundError
            Raised if there is no such entry.
        PermissionDeniedError
            Raised if the entry is a disabled user.
        """
        try:
            scope, dn = Principal.parse_id(principal_id)
        except ValueError as e:
            raise InvalidPrincipalError(str(e)) from e
        if scope == self._config.user_scope:
            kind = PrincipalKind.user
            search = self._filters.user_object()
            attrs = self._config.get_user_search_attributes(OBJECT_CLASS)
        elif scope == self._config.group_scope:
            kind = PrincipalKind.group
            search = self._filters.group_object()
            attrs = self._config.get_group_search_attributes(OBJECT_CLASS)
        else:
            raise InvalidPrincipalError(f"Invalid scope {scope}")
        logger = self._logger.bind(principal=principal_id)

        try:
            await self._storage.bind_service_account()
        except ServiceAccountBindError as e:
            if not e.invalid_credentials:
                raise
            msg = "Service account rejected, using principal from DN"
            logger.warning(msg)
            return Principal(
                id=principal_id,
                kind=kind,
                display_name=dn,
                login_name=dn,
                scope=scope,
                provider=self._config.provider.value,
            )

        request = SearchRequest(
            base=dn,
            scope=LDAPSearchScope.BASE,
            filter_exp=search,
            attributes=attrs,
        )
        entries = await self._storage.search(request)
        if not entries:
            raise NotFoundError(f"{dn} not found")
        if len(entries) > 1:
            raise LDAPError(f"More than one result found for {dn}")
        entry = entries[0]

        if not self._mapper.has_permission(entry):
            raise PermissionDeniedError
        principal = self._mapper.map(entry, dn, scope)
        if not principal:
            raise NotFoundError(f"{dn} not found")
        return principal

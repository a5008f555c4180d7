"""Authentication of users against the directory."""

from __future__ import annotations

import asyncio

import bonsai
from bonsai import LDAPSearchScope
from structlog.stdlib import BoundLogger

from ..config import DirectoryConfig
from ..constants import OBJECT_CLASS, OPERATIONAL_ATTRIBUTES
from ..exceptions import (
    InvalidPrincipalError,
    LDAPError,
    MissingRequiredError,
    PermissionDeniedError,
    UnauthorizedError,
)
from ..filters import FilterBuilder
from ..mapping import PrincipalMapper
from ..models.ldap import DirectoryEntry, SearchRequest
from ..models.principal import Principal, PrincipalKind, ResolvedIdentity
from ..storage.connection import DirectoryConnection
from ..storage.ldap import LDAPStorage
from .access import AccessChecker
from .groups import GroupMembershipResolver

__all__ = ["AuthenticationService"]


class AuthenticationService:
    """Verify user credentials and resolve the user's identity.

    The connection is re-bound several times during one authentication: as
    the service account to find the user, as the user to check the password,
    and optionally as the service account again to read group membership.
    Nothing else may use the connection until the call completes.

    Parameters
    ----------
    config
        Directory configuration.
    connection
        Connection to the directory, owned by the caller.
    storage
        Storage layer wrapping the same connection.
    mapper
        Converter from entries to principals.
    filters
        Builder for search filters.
    resolver
        Resolver for group membership.
    access_checker
        Access-control decision to apply after resolution. If `None`, every
        authenticated user is allowed.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        config: DirectoryConfig,
        connection: DirectoryConnection,
        storage: LDAPStorage,
        mapper: PrincipalMapper,
        filters: FilterBuilder,
        resolver: GroupMembershipResolver,
        access_checker: AccessChecker | None,
        logger: BoundLogger,
    ) -> None:
        self._config = config
        self._conn = connection
        self._storage = storage
        self._mapper = mapper
        self._filters = filters
        self._resolver = resolver
        self._access_checker = access_checker
        self._logger = logger

    async def authenticate(
        self, username: str, password: str
    ) -> ResolvedIdentity:
        """Authenticate a user with a password.

        Parameters
        ----------
        username
            Login name of the user.
        password
            Password of the user.

        Returns
        -------
        ResolvedIdentity
            The user's principal and groups.

        Raises
        ------
        GroupResolutionError
            Raised if group membership could not be resolved.
        InvalidOptionError
            Raised if the configured login filter or an attribute name is
            invalid.
        LDAPError
            Raised if the service account bind or the user bind failed for
            some reason other than invalid credentials.
        MissingRequiredError
            Raised if the password is empty.
        PermissionDeniedError
            Raised if the account is disabled or access was denied.
        UnauthorizedError
            Raised if the user could not be uniquely found or the password
            was wrong.
        """
        if not password:
            raise MissingRequiredError("Password not provided", "password")
        logger = self._logger.bind(user=username)

        await self._storage.bind_service_account()
        request = SearchRequest(
            base=self._config.user_search_base,
            scope=LDAPSearchScope.SUB,
            filter_exp=self._filters.user_login(username),
            attributes=self._config.get_user_search_attributes(OBJECT_CLASS),
        )
        try:
            entries = await self._storage.search(request, username)
        except LDAPError as e:
            raise UnauthorizedError from e
        if len(entries) != 1:
            logger.info(
                "User search did not find exactly one entry",
                ldap_search=request.filter_exp,
                count=len(entries),
            )
            raise UnauthorizedError
        entry = entries[0]

        await self._bind_as_user(entry.dn, password, logger)
        if self._config.search_using_service_account:
            try:
                await self._storage.bind_service_account()
            except LDAPError as e:
                raise UnauthorizedError from e

        try:
            snapshot = await self._get_operational_attributes(
                entry.dn, username
            )
        except LDAPError as e:
            raise UnauthorizedError from e
        if not snapshot:
            msg = "User entry vanished during login"
            logger.warning(msg, ldap_dn=entry.dn)
            raise UnauthorizedError

        user = self._get_user_principal(entry, logger)
        groups = await self._resolver.resolve(entry, snapshot)
        logger.info(
            "Authenticated user",
            principal=user.id,
            groups=[g.id for g in groups],
        )

        if self._access_checker:
            allowed = await self._access_checker.check_access(
                self._config.access_mode,
                self._config.allowed_principal_ids,
                user.id,
                groups,
            )
            if not allowed:
                logger.info("Access denied", principal=user.id)
                raise PermissionDeniedError
        return ResolvedIdentity(user=user, groups=groups)

    async def refetch_groups(self, principal_id: str) -> list[Principal]:
        """Resolve the current groups of a user without a password.

        Parameters
        ----------
        principal_id
            Principal ID of the user.

        Returns
        -------
        list of Principal
            The user's groups.

        Raises
        ------
        GroupResolutionError
            Raised if group membership could not be resolved.
        InvalidPrincipalError
            Raised if the principal ID is malformed or not a user.
        LDAPError
            Raised if the service account bind failed or more than one entry
            was found.
        PermissionDeniedError
            Raised if the account is disabled.
        UnauthorizedError
            Raised if the user entry could not be found.
        """
        try:
            scope, dn = Principal.parse_id(principal_id)
        except ValueError as e:
            raise InvalidPrincipalError(str(e)) from e
        if scope != self._config.user_scope:
            msg = f"Principal {principal_id} is not a user"
            raise InvalidPrincipalError(msg)
        logger = self._logger.bind(user=dn)

        await self._storage.bind_service_account()
        request = SearchRequest(
            base=dn,
            scope=LDAPSearchScope.BASE,
            filter_exp=self._filters.user_object(),
            attributes=self._config.get_user_search_attributes(OBJECT_CLASS),
        )
        entries = await self._storage.search(request, dn)
        if not entries:
            logger.info("Cannot locate user to refresh groups")
            raise UnauthorizedError
        if len(entries) > 1:
            raise LDAPError("User search found more than one result", dn)
        entry = entries[0]
        if not self._mapper.has_permission(entry):
            logger.info("Account is disabled", ldap_dn=entry.dn)
            raise PermissionDeniedError

        try:
            snapshot = await self._get_operational_attributes(entry.dn, dn)
        except LDAPError as e:
            raise UnauthorizedError from e
        if not snapshot:
            raise UnauthorizedError
        return await self._resolver.resolve(entry, snapshot)

    async def _bind_as_user(
        self, dn: str, password: str, logger: BoundLogger
    ) -> None:
        """Check the user's password by binding as the user.

        Raises
        ------
        LDAPError
            Raised if the bind failed for a reason other than invalid
            credentials.
        UnauthorizedError
            Raised if the credentials were invalid.
        """
        logger.debug("Binding as user", ldap_dn=dn)
        try:
            await self._conn.bind(dn, password)
        except bonsai.AuthenticationError as e:
            logger.info("Invalid credentials", ldap_dn=dn)
            raise UnauthorizedError from e
        except (bonsai.LDAPError, asyncio.TimeoutError) as e:
            msg = "Server error while authenticating"
            logger.exception(msg, ldap_dn=dn, error=str(e))
            raise LDAPError(msg, dn) from e

    async def _get_operational_attributes(
        self, dn: str, username: str
    ) -> DirectoryEntry | None:
        """Read the user's entry including operational attributes.

        Some directories only return virtual membership attributes when
        operational attributes are explicitly requested.
        """
        request = SearchRequest(
            base=dn,
            scope=LDAPSearchScope.BASE,
            filter_exp=self._filters.user_object(),
            attributes=list(OPERATIONAL_ATTRIBUTES),
        )
        entries = await self._storage.search(request, username)
        return entries[0] if entries else None

    def _get_user_principal(
        self, entry: DirectoryEntry, logger: BoundLogger
    ) -> Principal:
        if not self._mapper.has_permission(entry):
            logger.info("Account is disabled", ldap_dn=entry.dn)
            raise PermissionDeniedError
        external_id = self._storage.external_id(entry, PrincipalKind.user)
        user = self._mapper.map(entry, external_id, self._config.user_scope)
        if not user:
            msg = "User entry does not have the user object class"
            logger.warning(msg, ldap_dn=entry.dn)
            raise UnauthorizedError
        return user

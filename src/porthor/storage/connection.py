"""Connection to the directory server."""

from __future__ import annotations

from typing import Protocol

from bonsai import LDAPClient, LDAPEntry
from bonsai.asyncio import AIOLDAPConnection
from structlog.stdlib import BoundLogger

from ..models.ldap import DirectoryEntry, SearchRequest

__all__ = ["BonsaiDirectoryConnection", "DirectoryConnection"]


class DirectoryConnection(Protocol):
    """Interface to a connection to a directory server.

    A connection is owned by a single resolution flow. Binding changes the
    identity used for all subsequent searches on that connection. Errors are
    reported as `bonsai.LDAPError` exceptions so that callers can tell
    invalid credentials (`bonsai.AuthenticationError`) and missing base
    entries (`bonsai.NoSuchObjectError`) apart from other failures.
    """

    async def bind(self, dn: str, password: str) -> None:
        """Authenticate the connection as a DN, or anonymously if empty."""

    async def search(self, request: SearchRequest) -> list[DirectoryEntry]:
        """Perform a single search."""

    async def search_paged(
        self, request: SearchRequest, page_size: int
    ) -> list[DirectoryEntry]:
        """Perform a paged search, following pages until exhausted."""

    async def close(self) -> None:
        """Close the connection."""


class BonsaiDirectoryConnection:
    """Directory connection using the bonsai asyncio API.

    bonsai authenticates when the connection is opened, so each bind opens
    a new underlying connection with the new credentials and closes the old
    one.

    Parameters
    ----------
    url
        URL of the LDAP server.
    logger
        Logger for debug messages.
    start_tls
        Whether to upgrade the connection with StartTLS.
    timeout
        Timeout in seconds for opening the connection and for each search.
    """

    def __init__(
        self,
        url: str,
        logger: BoundLogger,
        *,
        start_tls: bool = False,
        timeout: float | None = None,
    ) -> None:
        self._url = url
        self._start_tls = start_tls
        self._timeout = timeout
        self._logger = logger.bind(ldap_url=url)
        self._conn: AIOLDAPConnection | None = None

    async def bind(self, dn: str, password: str) -> None:
        await self.close()
        client = LDAPClient(self._url, tls=self._start_tls)
        if dn:
            client.set_credentials("SIMPLE", user=dn, password=password)
        self._logger.debug("Binding to LDAP", ldap_bind_dn=dn or None)
        self._conn = await client.connect(is_async=True, timeout=self._timeout)

    async def search(self, request: SearchRequest) -> list[DirectoryEntry]:
        conn = await self._connection()
        results = await conn.search(
            base=request.base,
            scope=request.scope,
            filter_exp=request.filter_exp,
            attrlist=request.attributes,
            timeout=self._timeout,
        )
        return [_to_directory_entry(r) for r in results]

    async def search_paged(
        self, request: SearchRequest, page_size: int
    ) -> list[DirectoryEntry]:
        conn = await self._connection()
        results = await conn.paged_search(
            base=request.base,
            scope=request.scope,
            filter_exp=request.filter_exp,
            attrlist=request.attributes,
            timeout=self._timeout,
            page_size=page_size,
        )
        entries = []
        async for result in results:
            entries.append(_to_directory_entry(result))
        return entries

    async def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    async def _connection(self) -> AIOLDAPConnection:
        """Return the open connection, binding anonymously if needed."""
        if not self._conn:
            await self.bind("", "")
        assert self._conn
        return self._conn


def _to_directory_entry(entry: LDAPEntry) -> DirectoryEntry:
    """Convert a bonsai result entry into a `DirectoryEntry`.

    Binary values are decoded as UTF-8 with replacement, since only textual
    attributes are used for principal resolution.
    """
    attributes = {}
    for name, values in entry.items():
        if name.lower() == "dn":
            continue
        attributes[name] = [
            v.decode(errors="replace") if isinstance(v, bytes) else str(v)
            for v in values
        ]
    return DirectoryEntry(dn=str(entry.dn), attributes=attributes)

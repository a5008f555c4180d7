"""Resolution of a user's group memberships."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable
from enum import Enum
from itertools import batched

from structlog.stdlib import BoundLogger

from ..config import DirectoryConfig
from ..exceptions import GroupResolutionError, LDAPError
from ..filters import FilterBuilder
from ..models.ldap import DirectoryEntry
from ..models.principal import Principal, PrincipalKind
from ..storage.ldap import LDAPStorage

__all__ = [
    "GroupMembershipResolver",
    "MembershipStrategy",
    "forward_membership",
    "merge_principals",
    "reverse_membership_reference",
]


class MembershipStrategy(Enum):
    """Ways of discovering group membership, in the order they are tried."""

    forward = "forward"
    """Resolve the group DNs listed in the user's ``memberOf`` attribute."""

    reverse = "reverse"
    """Search for groups listing the user's member reference."""

    fallback = "fallback"
    """Search for groups listing the user's DN. Direct membership only."""

    nested = "nested"
    """Trace parent groups of every group found."""


def forward_membership(
    entry: DirectoryEntry, snapshot: DirectoryEntry, config: DirectoryConfig
) -> list[str]:
    """Return the group DNs from the user's forward membership attribute.

    Some directories only return the attribute when operational attributes
    are requested, so the operational snapshot is checked if the entry has
    no values.
    """
    attr = config.user_member_attribute
    return entry.get_values(attr) or snapshot.get_values(attr)


def reverse_membership_reference(
    entry: DirectoryEntry, snapshot: DirectoryEntry, config: DirectoryConfig
) -> str | None:
    """Return the value that groups use to reference the user as a member.

    Only the first value of the attribute is used.
    """
    attr = config.group_member_user_attribute
    values = entry.get_values(attr) or snapshot.get_values(attr)
    return values[0] if values else None


def merge_principals(
    accumulated: list[Principal], new: Iterable[Principal]
) -> int:
    """Add principals not already present, keyed by ID.

    The first principal seen with a given ID wins.

    Parameters
    ----------
    accumulated
        Principals found so far. Modified in place.
    new
        Principals to add.

    Returns
    -------
    int
        Number of principals added.
    """
    seen = {p.id for p in accumulated}
    added = 0
    for principal in new:
        if principal.id in seen:
            continue
        seen.add(principal.id)
        accumulated.append(principal)
        added += 1
    return added


class GroupMembershipResolver:
    """Resolve the full, deduplicated set of groups of a user.

    Group membership is represented differently by different directories.
    The user entry may list its groups in a forward membership attribute,
    groups may list their members by some user attribute (often a virtual
    ``entryDN``), or groups may only list the DNs of their direct members.
    Each strategy is tried in turn and the results merged, and directories
    that only expose direct membership get an explicit traversal of the
    parent groups.

    Parameters
    ----------
    config
        Directory configuration.
    storage
        Storage layer used to search for groups.
    filters
        Builder for the group search filters.
    logger
        Logger to use.
    """

    def __init__(
        self,
        config: DirectoryConfig,
        storage: LDAPStorage,
        filters: FilterBuilder,
        logger: BoundLogger,
    ) -> None:
        self._config = config
        self._storage = storage
        self._filters = filters
        self._logger = logger

    async def resolve(
        self, entry: DirectoryEntry, snapshot: DirectoryEntry
    ) -> list[Principal]:
        """Resolve the groups of a user.

        Parameters
        ----------
        entry
            The user's entry as returned by the user search.
        snapshot
            The user's entry as returned by a search for operational
            attributes.

        Returns
        -------
        list of Principal
            Group principals, each appearing once. Order is not significant.

        Raises
        ------
        GroupResolutionError
            Raised if a search for direct group membership failed. The groups
            found before the failure are attached to the exception. Failures
            while tracing parent groups are logged and the groups found so
            far are returned instead.
        InvalidOptionError
            Raised if a configured attribute name is invalid.
        """
        logger = self._logger.bind(user=entry.dn)
        groups: list[Principal] = []
        strategies = []

        group_dns = forward_membership(entry, snapshot, self._config)
        if group_dns:
            strategies.append(MembershipStrategy.forward)
            await self._resolve_forward(entry.dn, group_dns, groups, logger)

        reference = reverse_membership_reference(entry, snapshot, self._config)
        if reference:
            strategies.append(MembershipStrategy.reverse)
            found = await self._search_groups(
                MembershipStrategy.reverse, reference, entry.dn, groups
            )
            added = merge_principals(groups, found)
            logger.debug(
                "Resolved groups by member reference",
                strategy=MembershipStrategy.reverse.value,
                member_reference=reference,
                found=len(found),
                duplicates=len(found) - added,
            )

        fallback = False
        if not groups:
            strategies.append(MembershipStrategy.fallback)
            found = await self._search_groups(
                MembershipStrategy.fallback, entry.dn, entry.dn, groups
            )
            merge_principals(groups, found)
            logger.debug(
                "No groups found by attribute, searched by user DN",
                strategy=MembershipStrategy.fallback.value,
                found=len(found),
            )
            fallback = True

        nested = self._config.nested_group_membership_enabled
        if nested and (self._config.uses_reverse_membership or fallback):
            strategies.append(MembershipStrategy.nested)
            await self._add_parent_groups(groups, logger)

        logger.debug(
            "Resolved group membership",
            strategies=[s.value for s in strategies],
            group_count=len(groups),
        )
        return groups

    async def _resolve_forward(
        self,
        username: str,
        group_dns: list[str],
        groups: list[Principal],
        logger: BoundLogger,
    ) -> None:
        """Look up the groups named by the forward membership attribute.

        The values are only group identifiers, so each is resolved by search
        rather than trusted. DNs are searched in batches to bound the length
        of the filter.
        """
        batches = list(batched(group_dns, self._config.group_batch_size))
        logger.debug(
            "Resolving groups from forward membership",
            strategy=MembershipStrategy.forward.value,
            group_dn_count=len(group_dns),
            batch_count=len(batches),
        )
        duplicates = 0
        for batch in batches:
            search = self._filters.groups_by_dn(batch)
            try:
                found = await self._storage.search_principals(
                    search, PrincipalKind.group, username
                )
            except LDAPError as e:
                msg = "Cannot resolve groups from forward membership"
                raise GroupResolutionError(msg, username, groups) from e
            duplicates += len(found) - merge_principals(groups, found)
        if duplicates:
            logger.debug("Dropped duplicate groups", duplicates=duplicates)

    async def _search_groups(
        self,
        strategy: MembershipStrategy,
        member: str,
        username: str,
        groups: list[Principal],
    ) -> list[Principal]:
        search = self._filters.groups_with_member(member)
        try:
            return await self._storage.search_principals(
                search, PrincipalKind.group, username
            )
        except LDAPError as e:
            msg = f"Cannot resolve groups ({strategy.value} strategy)"
            raise GroupResolutionError(msg, username, groups) from e

    async def _add_parent_groups(
        self, groups: list[Principal], logger: BoundLogger
    ) -> None:
        """Add all ancestors of the groups found so far.

        This is a breadth-first traversal of the membership graph. Each group
        is queried at most once, so cycles in the graph terminate.

        Parameters
        ----------
        groups
            Groups found so far. Parent groups are added in place.
        logger
            Logger to use.
        """
        visited: set[str] = set()
        queue = deque(groups)
        initial = len(groups)
        while queue:
            group = queue.popleft()
            if group.id in visited:
                continue
            visited.add(group.id)
            search = self._filters.groups_with_member(group.external_id)
            try:
                parents = await self._storage.search_principals(
                    search, PrincipalKind.group
                )
            except LDAPError as e:
                logger.warning(
                    "Cannot trace parent groups, returning partial groups",
                    group=group.id,
                    error=str(e),
                )
                break
            queue.extend(p for p in parents if p.id not in visited)
            merge_principals(groups, parents)
        logger.debug(
            "Traced parent groups",
            strategy=MembershipStrategy.nested.value,
            groups_visited=len(visited),
            nested_groups=len(groups) - initial,
        )

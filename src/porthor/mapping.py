"""Conversion of directory entries into principals."""

from __future__ import annotations

from .config import DirectoryConfig
from .constants import OBJECT_CLASS
from .models.ldap import DirectoryEntry
from .models.principal import Principal, PrincipalKind

__all__ = ["PrincipalMapper"]


class PrincipalMapper:
    """Build principals from directory entries.

    Parameters
    ----------
    config
        Directory configuration supplying object classes and the attributes
        holding names.
    """

    def __init__(self, config: DirectoryConfig) -> None:
        self._config = config

    def map(
        self, entry: DirectoryEntry, external_id: str, scope: str
    ) -> Principal | None:
        """Convert an entry into a principal.

        Parameters
        ----------
        entry
            Entry returned by a directory search.
        external_id
            External ID of the principal, usually the DN of the entry.
        scope
            Scope of the principal, which determines whether a user or group
            is expected.

        Returns
        -------
        Principal or None
            The principal, or `None` if the entry does not have the object
            class expected for the kind of principal. Callers scanning mixed
            result sets should skip such entries.

        Raises
        ------
        ValueError
            Raised if the scope does not name a user or group.
        """
        kind = PrincipalKind.from_scope(scope)
        if kind == PrincipalKind.user:
            object_class = self._config.user_object_class
            name_attr = self._config.user_name_attribute
        else:
            object_class = self._config.group_object_class
            name_attr = self._config.group_name_attribute
        if not self.is_type(entry, object_class):
            return None

        # Groups also take their login name from the user login attribute.
        display_name = entry.get_first(name_attr) or external_id
        login_name = (
            entry.get_first(self._config.user_login_attribute) or external_id
        )
        return Principal(
            id=Principal.build_id(scope, external_id),
            kind=kind,
            display_name=display_name,
            login_name=login_name,
            scope=scope,
            provider=self._config.provider.value,
        )

    def is_type(self, entry: DirectoryEntry, object_class: str) -> bool:
        """Whether the entry has the given object class."""
        wanted = object_class.lower()
        return any(v.lower() == wanted for v in entry.get_values(OBJECT_CLASS))

    def has_permission(self, entry: DirectoryEntry) -> bool:
        """Whether the account represented by an entry is enabled.

        Only user entries are checked, and only if both an account control
        attribute and a non-zero disabled bit mask are configured. An account
        is disabled if any of the masked bits are set.
        """
        attr = self._config.user_enabled_attribute
        mask = self._config.user_disabled_bit_mask
        if not attr or not mask:
            return True
        if not self.is_type(entry, self._config.user_object_class):
            return True
        value = entry.get_first(attr)
        if value is None:
            return True
        try:
            flags = int(value)
        except ValueError:
            return True
        return flags & mask == 0

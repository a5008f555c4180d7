"""Data models for LDAP."""

from __future__ import annotations

from dataclasses import dataclass, field

from bonsai import LDAPSearchScope

__all__ = ["DirectoryEntry", "SearchRequest"]


@dataclass
class DirectoryEntry:
    """A single entry returned by a directory search.

    Attribute names in directory results do not reliably preserve the case
    used in the request, so all lookups are case-insensitive.
    """

    dn: str
    """Distinguished name of the entry."""

    attributes: dict[str, list[str]] = field(default_factory=dict)
    """Mapping of attribute name to the list of its values."""

    def get_values(self, name: str) -> list[str]:
        """Return the values of an attribute, or an empty list if absent."""
        wanted = name.lower()
        for attr, values in self.attributes.items():
            if attr.lower() == wanted:
                return values
        return []

    def get_first(self, name: str) -> str | None:
        """Return the first value of an attribute if present."""
        values = self.get_values(name)
        return values[0] if values else None


@dataclass
class SearchRequest:
    """Parameters of a single directory search."""

    base: str
    """Base DN of the search."""

    scope: LDAPSearchScope
    """Either ``BASE`` for a single entry or ``SUB`` for a whole subtree."""

    filter_exp: str
    """Search filter, already escaped."""

    attributes: list[str] = field(default_factory=list)
    """Attributes to retrieve."""

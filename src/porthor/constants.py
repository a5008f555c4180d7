"""Constants for porthor."""

__all__ = [
    "CONFIG_PATH",
    "DEFAULT_GROUP_BATCH_SIZE",
    "DEFAULT_PAGE_SIZE",
    "GROUP_INTEGER_SEARCH_ATTRIBUTE",
    "LDAP_TIMEOUT",
    "OBJECT_CLASS",
    "OPERATIONAL_ATTRIBUTES",
    "PRINCIPAL_ID_SEPARATOR",
    "USER_INTEGER_SEARCH_ATTRIBUTE",
]

CONFIG_PATH = "/etc/porthor/porthor.yaml"
"""Default configuration path."""

DEFAULT_GROUP_BATCH_SIZE = 50
"""Default number of group DNs resolved by a single search.

Bounds the length of the filter built when resolving the values of the
user's forward membership attribute.
"""

DEFAULT_PAGE_SIZE = 1000
"""Default page size for paged subtree searches."""

GROUP_INTEGER_SEARCH_ATTRIBUTE = "gidNumber"
"""Group search attribute holding an integer, which only matches exactly."""

LDAP_TIMEOUT = 5.0
"""Default timeout (in seconds) for LDAP binds and searches."""

OBJECT_CLASS = "objectClass"
"""Attribute holding the object classes of an entry."""

OPERATIONAL_ATTRIBUTES = ("1.1", "+", "*")
"""Attribute list requesting both operational and user attributes.

Some directories (FreeIPA in particular) only return virtual membership
attributes when explicitly asked for operational attributes.
"""

PRINCIPAL_ID_SEPARATOR = "://"
"""Separator between the scope and the external ID in a principal ID."""

USER_INTEGER_SEARCH_ATTRIBUTE = "uidNumber"
"""User search attribute holding an integer, which only matches exactly."""

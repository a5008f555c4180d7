"""Models for resolved principals."""

from __future__ import annotations

from enum import Enum
from typing import Self

from pydantic import BaseModel, ConfigDict, Field

from ..constants import PRINCIPAL_ID_SEPARATOR

__all__ = [
    "Principal",
    "PrincipalKind",
    "ResolvedIdentity",
]


class PrincipalKind(Enum):
    """The kind of a principal."""

    user = "user"
    group = "group"

    @classmethod
    def from_scope(cls, scope: str) -> Self:
        """Determine the kind of principal from its scope.

        Parameters
        ----------
        scope
            Scope tag such as ``openldap_user``.

        Returns
        -------
        PrincipalKind
            Kind corresponding to the suffix of the scope.

        Raises
        ------
        ValueError
            Raised if the scope does not end in ``_user`` or ``_group``.
        """
        _, _, kind = scope.rpartition("_")
        return cls(kind.lower())


class Principal(BaseModel):
    """A user or group resolved from the directory.

    Equality of ``id`` is the only identity of a principal. Two principals
    with the same ``id`` represent the same directory entry.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(
        ...,
        title="Principal ID",
        description="Scope and external ID joined by ``://``",
        examples=["openldap_user://uid=alice,ou=people,dc=example,dc=com"],
    )

    kind: PrincipalKind = Field(..., title="Kind of principal")

    display_name: str = Field(
        ...,
        title="Display name",
        description="Human-readable name, or the DN if the entry has none",
        examples=["Alice Example"],
    )

    login_name: str = Field(
        ...,
        title="Login name",
        description="Login attribute value, or the DN if the entry has none",
        examples=["alice"],
    )

    scope: str = Field(
        ...,
        title="Principal scope",
        examples=["openldap_user", "openldap_group"],
    )

    provider: str = Field(..., title="Provider", examples=["openldap"])

    @property
    def external_id(self) -> str:
        """The external ID (usually a DN) portion of the principal ID."""
        return self.id.split(PRINCIPAL_ID_SEPARATOR, 1)[1]

    @staticmethod
    def build_id(scope: str, external_id: str) -> str:
        """Construct a principal ID from a scope and an external ID."""
        return f"{scope}{PRINCIPAL_ID_SEPARATOR}{external_id}"

    @staticmethod
    def parse_id(principal_id: str) -> tuple[str, str]:
        """Split a principal ID into its scope and external ID.

        Raises
        ------
        ValueError
            Raised if the ID does not have both a scope and an external ID.
        """
        separator = PRINCIPAL_ID_SEPARATOR
        scope, sep, external_id = principal_id.partition(separator)
        if not sep or not scope or not external_id:
            raise ValueError(f"Malformed principal ID {principal_id}")
        return scope, external_id


class ResolvedIdentity(BaseModel):
    """A user principal and the full set of groups that user belongs to."""

    user: Principal = Field(..., title="User principal")

    groups: list[Principal] = Field(
        default_factory=list,
        title="Group principals",
        description=(
            "Deduplicated, transitively-closed group memberships. Order is"
            " not significant."
        ),
    )

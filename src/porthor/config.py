"""Configuration for porthor.

porthor is configured by a YAML file containing the directory settings.
Secrets may instead be injected via environment variables. Every part of the
configuration that accepts environment variables uses the same ``PORTHOR_``
prefix, and only the settings with explicit ``validation_alias`` settings
support configuration via environment variable.

Filter fragments such as ``userLoginFilter`` are deliberately not validated
here. They are checked at the point of use so that a bad override fails the
operation that uses it with `~porthor.exceptions.InvalidOptionError`.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Annotated, Self, override

import yaml
from pydantic import (
    AliasChoices,
    Field,
    SecretStr,
    UrlConstraints,
    model_validator,
)
from pydantic.alias_generators import to_camel
from pydantic_core import Url
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)
from safir.logging import LogLevel, configure_logging

from .constants import (
    DEFAULT_GROUP_BATCH_SIZE,
    DEFAULT_PAGE_SIZE,
    LDAP_TIMEOUT,
)

LdapDsn = Annotated[
    Url, UrlConstraints(allowed_schemes=["ldap", "ldaps"], host_required=True)
]
"""DSN for connecting to an LDAP server."""

__all__ = [
    "CamelCaseSettings",
    "Config",
    "DirectoryConfig",
    "DirectoryProvider",
    "EnvFirstSettings",
    "LdapDsn",
]


class DirectoryProvider(Enum):
    """Directory server conventions porthor knows how to query.

    The provider name is also the prefix of the principal scopes, so
    principals resolved from an OpenLDAP server have scopes
    ``openldap_user`` and ``openldap_group``.
    """

    activedirectory = "activedirectory"
    """Generic LDAP or Active Directory with a ``memberOf`` attribute."""

    openldap = "openldap"
    """OpenLDAP, where nested membership is only visible via ``member``."""

    freeipa = "freeipa"
    """FreeIPA, which flattens nested membership in operational attributes."""


class CamelCaseSettings(BaseSettings):
    """Base class for Pydantic settings supporting camel-case.

    This base class also forbids all extra attributes. It should be used as
    the base class (possibly indirectly) for all porthor configuration models
    that support environment variable overrides.
    """

    model_config = SettingsConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )


class EnvFirstSettings(CamelCaseSettings):
    """Base class for Pydantic settings with environment overrides.

    Classes that inherit from this base class will prioritize environment
    variables over arguments to the class constructor.
    """

    @override
    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Override the sources of settings.

        Deactivate :file:`.env` and secret file support. Allow environment
        variables to override init parameters, since init parameters come
        from the YAML configuration file and we want environment variables to
        take precedent.
        """
        return (env_settings, init_settings)


class DirectoryConfig(EnvFirstSettings):
    """Configuration for the directory server.

    The defaults match a stock OpenLDAP server using ``inetOrgPerson`` users
    and ``groupOfNames`` groups with the ``memberof`` overlay enabled.
    """

    url: LdapDsn = Field(
        ...,
        title="LDAP server URL",
        description="URL of the LDAP server to authenticate against",
    )

    start_tls: bool = Field(
        False,
        title="Whether to use StartTLS",
        description="Upgrade an ``ldap`` connection with StartTLS",
    )

    timeout: float = Field(
        LDAP_TIMEOUT,
        title="LDAP timeout",
        description=(
            "Timeout in seconds for binds and searches. Only used by the"
            " connection, never by the resolution logic itself."
        ),
        gt=0,
    )

    provider: DirectoryProvider = Field(
        DirectoryProvider.openldap,
        title="Directory provider",
        description=(
            "Which directory conventions to follow. Also used as the prefix"
            " of principal scopes."
        ),
    )

    service_account_dn: str | None = Field(
        None,
        title="Service account DN",
        description=(
            "DN to bind as when searching for users and groups. If not set,"
            " porthor will do an anonymous bind."
        ),
    )

    service_account_password: SecretStr | None = Field(
        None,
        title="Service account password",
        description="Password for ``serviceAccountDn``",
        validation_alias=AliasChoices(
            "PORTHOR_LDAP_SERVICE_ACCOUNT_PASSWORD", "serviceAccountPassword"
        ),
    )

    search_using_service_account: bool = Field(
        False,
        title="Search as the service account",
        description=(
            "After verifying the user's password, bind as the service account"
            " again before reading group membership"
        ),
    )

    user_search_base: str = Field(
        ...,
        title="Base DN for user searches",
        examples=["ou=people,dc=example,dc=com"],
    )

    group_search_base: str | None = Field(
        None,
        title="Base DN for group searches",
        description="If not set, ``userSearchBase`` is used",
        examples=["ou=groups,dc=example,dc=com"],
    )

    user_object_class: str = Field(
        "inetOrgPerson", title="Object class of users"
    )

    user_login_attribute: str = Field(
        "uid", title="Attribute holding the login name"
    )

    user_name_attribute: str = Field(
        "cn", title="Attribute holding the user's display name"
    )

    user_member_attribute: str = Field(
        "memberOf",
        title="Forward membership attribute",
        description="Attribute of a user entry listing the user's groups",
    )

    user_search_attribute: str = Field(
        "uid|sn|givenName",
        title="User search attributes",
        description="Pipe-separated attributes matched by principal searches",
    )

    user_login_filter: str | None = Field(
        None,
        title="Additional login filter",
        description="LDAP filter ANDed with the filter locating the user",
        examples=["(employeeType=staff)"],
    )

    user_search_filter: str | None = Field(
        None,
        title="Additional user search filter",
        description="LDAP filter ANDed with principal searches for users",
    )

    user_enabled_attribute: str | None = Field(
        None,
        title="Account control attribute",
        description=(
            "Integer attribute checked against ``userDisabledBitMask`` to"
            " decide whether an account is disabled"
        ),
        examples=["userAccountControl"],
    )

    user_disabled_bit_mask: int = Field(
        0,
        title="Disabled account bit mask",
        description=(
            "If any of these bits are set in ``userEnabledAttribute``, the"
            " account is disabled. Zero disables the check."
        ),
        examples=[2],
        ge=0,
    )

    group_object_class: str = Field(
        "groupOfNames", title="Object class of groups"
    )

    group_name_attribute: str = Field(
        "cn", title="Attribute holding the group's display name"
    )

    group_dn_attribute: str = Field(
        "entryDN",
        title="Group DN attribute",
        description=(
            "Attribute of a group entry holding its DN, matched against the"
            " values of the forward membership attribute"
        ),
    )

    group_member_user_attribute: str = Field(
        "entryDN",
        title="User attribute referenced by group membership",
        description=(
            "Attribute of a user entry whose value appears in the group"
            " membership attribute"
        ),
    )

    group_member_mapping_attribute: str = Field(
        "member",
        title="Reverse membership attribute",
        description="Attribute of a group entry listing its members",
    )

    group_search_attribute: str = Field(
        "cn", title="Attribute matched by principal searches for groups"
    )

    group_search_filter: str | None = Field(
        None,
        title="Additional group search filter",
        description="LDAP filter ANDed with principal searches for groups",
    )

    nested_group_membership_enabled: bool = Field(
        False,
        title="Resolve nested groups",
        description=(
            "Trace parent groups when the directory only exposes direct"
            " membership"
        ),
    )

    external_id_from_attributes: bool = Field(
        False,
        title="Use attribute values as external IDs",
        description=(
            "Build user principal IDs from the login attribute and group"
            " principal IDs from the group DN attribute rather than the"
            " entry DN, as needed when principals come from an external"
            " identity provider"
        ),
    )

    group_batch_size: int = Field(
        DEFAULT_GROUP_BATCH_SIZE,
        title="Group batch size",
        description="Number of group DNs resolved by one search",
        gt=0,
    )

    page_size: int = Field(
        DEFAULT_PAGE_SIZE,
        title="Search page size",
        description="Page size for paged subtree searches",
        gt=0,
    )

    access_mode: str = Field(
        "unrestricted",
        title="Access mode",
        description="Passed unchanged to the access-control check",
    )

    allowed_principal_ids: list[str] = Field(
        default_factory=list,
        title="Allowed principal IDs",
        description="Passed unchanged to the access-control check",
    )

    @model_validator(mode="after")
    def _validate_password(self) -> Self:
        """Ensure a password is set if a service account is configured."""
        if self.service_account_dn and not self.service_account_password:
            msg = "serviceAccountPassword required if serviceAccountDn is set"
            raise ValueError(msg)
        return self

    @property
    def group_base(self) -> str:
        """Base DN for group searches."""
        return self.group_search_base or self.user_search_base

    @property
    def user_scope(self) -> str:
        """Scope tag of user principals."""
        return f"{self.provider.value}_user"

    @property
    def group_scope(self) -> str:
        """Scope tag of group principals."""
        return f"{self.provider.value}_group"

    @property
    def uses_reverse_membership(self) -> bool:
        """Whether nested membership is only visible through group entries."""
        return self.provider == DirectoryProvider.openldap

    def get_user_search_attributes(self, *extra: str) -> list[str]:
        """Attributes to request when searching for users."""
        attrs = [
            self.user_member_attribute,
            self.user_login_attribute,
            self.user_name_attribute,
            self.user_enabled_attribute,
            self.group_member_user_attribute,
            *self.user_search_attribute.split("|"),
            *extra,
        ]
        return _dedupe(attrs)

    def get_group_search_attributes(self, *extra: str) -> list[str]:
        """Attributes to request when searching for groups."""
        attrs = [
            self.group_member_user_attribute,
            self.group_member_mapping_attribute,
            self.group_name_attribute,
            self.group_search_attribute,
            self.group_dn_attribute,
            self.user_login_attribute,
            *extra,
        ]
        return _dedupe(attrs)


class Config(EnvFirstSettings):
    """Configuration for porthor."""

    log_level: LogLevel = Field(
        LogLevel.INFO,
        title="Logging level",
        description="Python logging level",
        validation_alias=AliasChoices("PORTHOR_LOG_LEVEL", "logLevel"),
    )

    ldap: DirectoryConfig = Field(
        ...,
        title="Directory configuration",
        description="Settings for the directory server to authenticate with",
    )

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Construct a Config object from a configuration file.

        Parameters
        ----------
        path
            Path to the configuration file in YAML.

        Returns
        -------
        Config
            The corresponding `Config` object.
        """
        with path.open("r") as f:
            return cls.model_validate(yaml.safe_load(f))

    def configure_logging(self) -> None:
        """Configure logging based on the porthor configuration."""
        configure_logging(name="porthor", log_level=self.log_level)


def _dedupe(attrs: list[str | None]) -> list[str]:
    """Drop empty and repeated attribute names, preserving order."""
    seen = set()
    result = []
    for attr in attrs:
        if not attr or attr.lower() in seen:
            continue
        seen.add(attr.lower())
        result.append(attr)
    return result

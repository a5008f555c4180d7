"""Tests for the porthor configuration."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from porthor.config import Config, DirectoryProvider

from .support.config import config_path, configure
from .support.constants import (
    GROUP_BASE_DN,
    SERVICE_ACCOUNT_DN,
    SERVICE_ACCOUNT_PASSWORD,
    USER_BASE_DN,
)


def test_openldap() -> None:
    config = configure("openldap")
    assert config.ldap.provider == DirectoryProvider.openldap
    assert str(config.ldap.url) == "ldap://ldap.example.com/"
    assert config.ldap.service_account_dn == SERVICE_ACCOUNT_DN
    assert config.ldap.service_account_password
    password = config.ldap.service_account_password.get_secret_value()
    assert password == SERVICE_ACCOUNT_PASSWORD
    assert config.ldap.group_base == GROUP_BASE_DN
    assert config.ldap.user_scope == "openldap_user"
    assert config.ldap.group_scope == "openldap_group"
    assert config.ldap.uses_reverse_membership
    assert config.ldap.nested_group_membership_enabled
    assert config.ldap.group_batch_size == 50
    assert config.ldap.page_size == 1000

    assert config.ldap.get_user_search_attributes() == [
        "memberOf",
        "uid",
        "cn",
        "entryDN",
        "sn",
        "givenName",
    ]
    assert config.ldap.get_group_search_attributes("objectClass") == [
        "entryDN",
        "member",
        "cn",
        "uid",
        "objectClass",
    ]


def test_activedirectory() -> None:
    config = configure("activedirectory")
    assert config.ldap.provider == DirectoryProvider.activedirectory
    assert config.ldap.start_tls
    assert config.ldap.user_scope == "activedirectory_user"
    assert not config.ldap.uses_reverse_membership
    assert config.ldap.user_disabled_bit_mask == 2

    # Attribute names are deduplicated without regard to case.
    attrs = config.ldap.get_user_search_attributes("objectclass")
    assert attrs == [
        "memberOf",
        "sAMAccountName",
        "name",
        "userAccountControl",
        "distinguishedName",
        "sn",
        "givenName",
        "objectclass",
    ]


def test_anonymous() -> None:
    config = configure("anonymous")
    assert config.ldap.service_account_dn is None
    assert config.ldap.service_account_password is None
    assert config.ldap.provider == DirectoryProvider.openldap
    assert config.ldap.group_base == USER_BASE_DN
    assert not config.ldap.nested_group_membership_enabled
    assert not config.ldap.search_using_service_account


@pytest.mark.parametrize("filename", ["bad-password", "bad-url"])
def test_invalid(filename: str) -> None:
    with pytest.raises(ValidationError):
        Config.from_file(config_path(filename))

"""Tests for user authentication."""

from __future__ import annotations

import bonsai
import pytest
from pydantic import SecretStr

from porthor.exceptions import (
    GroupResolutionError,
    InvalidOptionError,
    InvalidPrincipalError,
    LDAPError,
    MissingRequiredError,
    PermissionDeniedError,
    ServiceAccountBindError,
    UnauthorizedError,
)
from porthor.factory import Factory
from porthor.models.principal import Principal, PrincipalKind

from ..support.config import directory_config
from ..support.constants import (
    GROUP_BASE_DN,
    SERVICE_ACCOUNT_DN,
    USER_BASE_DN,
    USER_PASSWORD,
)
from ..support.ldap import MockLDAP

_ALICE = f"uid=alice,{USER_BASE_DN}"
_ENG = f"cn=eng,{GROUP_BASE_DN}"


class MockAccessChecker:
    """Allow list of principal IDs."""

    def __init__(self, allowed: set[str]) -> None:
        self.allowed = allowed
        self.calls: list[tuple[str, list[str], str, list[str]]] = []

    async def check_access(
        self,
        access_mode: str,
        allowed_principal_ids: list[str],
        user_principal_id: str,
        groups: list[Principal],
    ) -> bool:
        group_ids = [g.id for g in groups]
        self.calls.append(
            (access_mode, allowed_principal_ids, user_principal_id, group_ids)
        )
        if user_principal_id in self.allowed:
            return True
        return any(g in self.allowed for g in group_ids)


def _add_alice(mock_ldap: MockLDAP) -> None:
    mock_ldap.add_group("eng", members=[_ALICE])
    mock_ldap.add_user("alice", name="Alice Example", member_of=[_ENG])


@pytest.mark.asyncio
async def test_authenticate(factory: Factory, mock_ldap: MockLDAP) -> None:
    _add_alice(mock_ldap)
    auth_service = factory.create_authentication_service()

    identity = await auth_service.authenticate("alice", USER_PASSWORD)
    assert identity.user == Principal(
        id=f"openldap_user://{_ALICE}",
        kind=PrincipalKind.user,
        display_name="Alice Example",
        login_name="alice",
        scope="openldap_user",
        provider="openldap",
    )
    assert [g.id for g in identity.groups] == [f"openldap_group://{_ENG}"]
    assert mock_ldap.binds[:2] == [SERVICE_ACCOUNT_DN, _ALICE]

    # Authenticating again gives the same result.
    assert await auth_service.authenticate("alice", USER_PASSWORD) == identity


@pytest.mark.asyncio
async def test_invalid_password(
    factory: Factory, mock_ldap: MockLDAP
) -> None:
    _add_alice(mock_ldap)
    auth_service = factory.create_authentication_service()

    with pytest.raises(UnauthorizedError) as excinfo:
        await auth_service.authenticate("alice", "wrong")
    assert isinstance(excinfo.value.__cause__, bonsai.AuthenticationError)
    assert str(excinfo.value) == "Unauthorized"

    with pytest.raises(MissingRequiredError):
        await auth_service.authenticate("alice", "")
    assert mock_ldap.binds == [SERVICE_ACCOUNT_DN, _ALICE]


@pytest.mark.asyncio
async def test_unknown_user(factory: Factory, mock_ldap: MockLDAP) -> None:
    _add_alice(mock_ldap)
    mock_ldap.add_user("amy")
    auth_service = factory.create_authentication_service()

    with pytest.raises(UnauthorizedError):
        await auth_service.authenticate("bob", USER_PASSWORD)

    # Filter metacharacters in the username match literally.
    with pytest.raises(UnauthorizedError):
        await auth_service.authenticate("a*", USER_PASSWORD)
    assert mock_ldap.searches_for("(uid=a\\2A)")
    with pytest.raises(UnauthorizedError):
        await auth_service.authenticate("alice\0", USER_PASSWORD)
    assert mock_ldap.searches_for("(uid=alice\\00)")
    assert mock_ldap.binds == [SERVICE_ACCOUNT_DN] * 3


@pytest.mark.asyncio
async def test_ambiguous_user(factory: Factory, mock_ldap: MockLDAP) -> None:
    _add_alice(mock_ldap)
    mock_ldap.add_entry(
        f"cn=Alice Other,{USER_BASE_DN}",
        {"objectClass": ["inetOrgPerson"], "uid": ["alice"]},
        password=USER_PASSWORD,
    )
    auth_service = factory.create_authentication_service()

    # The password is never checked if more than one user matches.
    with pytest.raises(UnauthorizedError):
        await auth_service.authenticate("alice", USER_PASSWORD)
    assert mock_ldap.binds == [SERVICE_ACCOUNT_DN]


@pytest.mark.asyncio
async def test_invalid_login_filter(mock_ldap: MockLDAP) -> None:
    _add_alice(mock_ldap)
    ldap_config = directory_config(
        "openldap", user_login_filter="(employeeType=staff"
    )
    factory = Factory(ldap_config, mock_ldap)
    auth_service = factory.create_authentication_service()

    with pytest.raises(InvalidOptionError) as excinfo:
        await auth_service.authenticate("alice", USER_PASSWORD)
    assert excinfo.value.field_path == ["userLoginFilter"]
    assert mock_ldap.searches == []


@pytest.mark.asyncio
async def test_login_filter(mock_ldap: MockLDAP) -> None:
    _add_alice(mock_ldap)
    mock_ldap.add_user("bob", attributes={"employeeType": ["staff"]})
    ldap_config = directory_config(
        "openldap", user_login_filter="(employeeType=staff)"
    )
    factory = Factory(ldap_config, mock_ldap)
    auth_service = factory.create_authentication_service()

    identity = await auth_service.authenticate("bob", USER_PASSWORD)
    assert identity.user.login_name == "bob"
    assert identity.groups == []
    with pytest.raises(UnauthorizedError):
        await auth_service.authenticate("alice", USER_PASSWORD)


@pytest.mark.asyncio
async def test_ldap_errors(factory: Factory, mock_ldap: MockLDAP) -> None:
    _add_alice(mock_ldap)
    auth_service = factory.create_authentication_service()

    # A failed user search is reported as an authentication failure.
    mock_ldap.fail_search("(uid=alice)", bonsai.LDAPError("Server down"))
    with pytest.raises(UnauthorizedError):
        await auth_service.authenticate("alice", USER_PASSWORD)

    # A server error while checking the password is not.
    mock_ldap.add_user("bob")
    error = bonsai.ConnectionError("Can't contact LDAP server")
    mock_ldap.fail_bind(f"uid=bob,{USER_BASE_DN}", error)
    with pytest.raises(LDAPError) as excinfo:
        await auth_service.authenticate("bob", USER_PASSWORD)
    assert not isinstance(excinfo.value, UnauthorizedError)

    # Nor is a failure of the service account.
    mock_ldap.fail_bind(SERVICE_ACCOUNT_DN, error)
    with pytest.raises(ServiceAccountBindError):
        await auth_service.authenticate("bob", USER_PASSWORD)


@pytest.mark.asyncio
async def test_group_failure(factory: Factory, mock_ldap: MockLDAP) -> None:
    _add_alice(mock_ldap)
    mock_ldap.fail_search(f"(entryDN={_ENG})", bonsai.LDAPError("Down"))
    auth_service = factory.create_authentication_service()

    with pytest.raises(GroupResolutionError) as excinfo:
        await auth_service.authenticate("alice", USER_PASSWORD)
    assert excinfo.value.groups == []


@pytest.mark.asyncio
async def test_search_using_service_account(mock_ldap: MockLDAP) -> None:
    mock_ldap.add_group("eng", members=[_ALICE])
    staff = mock_ldap.add_group("staff", members=[_ENG])
    mock_ldap.add_user("alice", operational={"memberOf": [_ENG, staff]})
    factory = Factory(directory_config("freeipa"), mock_ldap)
    auth_service = factory.create_authentication_service()

    # FreeIPA only shows memberOf when operational attributes are requested,
    # and already includes nested groups.
    identity = await auth_service.authenticate("alice", USER_PASSWORD)
    assert identity.user.id == f"freeipa_user://{_ALICE}"
    assert [g.id for g in identity.groups] == [
        f"freeipa_group://{_ENG}",
        f"freeipa_group://{staff}",
    ]
    assert mock_ldap.binds[:3] == [
        SERVICE_ACCOUNT_DN,
        _ALICE,
        SERVICE_ACCOUNT_DN,
    ]


@pytest.mark.asyncio
async def test_rebind_failure(mock_ldap: MockLDAP) -> None:
    _add_alice(mock_ldap)
    ldap_config = directory_config("freeipa")
    auth_service = Factory(
        ldap_config, mock_ldap
    ).create_authentication_service()
    await auth_service.authenticate("alice", USER_PASSWORD)

    # Changing the service account password after the user is found makes
    # the second service account bind fail.
    original = mock_ldap.bind

    async def bind(dn: str, password: str) -> None:
        await original(dn, password)
        if dn == _ALICE:
            mock_ldap.fail_bind(
                SERVICE_ACCOUNT_DN, bonsai.AuthenticationError("Expired")
            )

    mock_ldap.bind = bind
    with pytest.raises(UnauthorizedError):
        await auth_service.authenticate("alice", USER_PASSWORD)


@pytest.mark.asyncio
async def test_disabled_account(mock_ldap: MockLDAP) -> None:
    ldap_config = directory_config("activedirectory")
    factory = Factory(ldap_config, mock_ldap)
    auth_service = factory.create_authentication_service()
    eng = mock_ldap.add_group(
        "eng",
        members=[_ALICE],
        object_class="group",
        attributes={"name": ["Engineering"], "distinguishedName": [_ENG]},
    )
    for uid, control in (("alice", "512"), ("mallory", "514")):
        dn = f"uid={uid},{USER_BASE_DN}"
        mock_ldap.add_user(
            uid,
            member_of=[eng],
            attributes={
                "sAMAccountName": [uid],
                "name": [uid.capitalize()],
                "distinguishedName": [dn],
                "userAccountControl": [control],
            },
        )

    identity = await auth_service.authenticate("alice", USER_PASSWORD)
    assert identity.user.id == f"activedirectory_user://{_ALICE}"
    assert identity.user.display_name == "Alice"
    assert [g.display_name for g in identity.groups] == ["Engineering"]

    with pytest.raises(PermissionDeniedError):
        await auth_service.authenticate("mallory", USER_PASSWORD)

    # Only enabled users can refresh their groups.
    groups = await auth_service.refetch_groups(
        f"activedirectory_user://{_ALICE}"
    )
    assert [g.display_name for g in groups] == ["Engineering"]
    mallory = f"uid=mallory,{USER_BASE_DN}"
    with pytest.raises(PermissionDeniedError):
        await auth_service.refetch_groups(f"activedirectory_user://{mallory}")
    assert not mock_ldap.searches_for(f"(member={mallory})")


@pytest.mark.asyncio
async def test_access_checker(factory: Factory, mock_ldap: MockLDAP) -> None:
    _add_alice(mock_ldap)
    mock_ldap.add_user("bob")
    checker = MockAccessChecker({f"openldap_group://{_ENG}"})
    auth_service = factory.create_authentication_service(checker)

    identity = await auth_service.authenticate("alice", USER_PASSWORD)
    assert identity.user.login_name == "alice"
    with pytest.raises(PermissionDeniedError):
        await auth_service.authenticate("bob", USER_PASSWORD)

    bob = f"uid=bob,{USER_BASE_DN}"
    assert checker.calls == [
        (
            "unrestricted",
            [],
            f"openldap_user://{_ALICE}",
            [f"openldap_group://{_ENG}"],
        ),
        ("unrestricted", [], f"openldap_user://{bob}", []),
    ]


@pytest.mark.asyncio
async def test_refetch_groups(factory: Factory, mock_ldap: MockLDAP) -> None:
    _add_alice(mock_ldap)
    staff = mock_ldap.add_group("staff", members=[_ENG])
    auth_service = factory.create_authentication_service()

    groups = await auth_service.refetch_groups(f"openldap_user://{_ALICE}")
    assert [g.id for g in groups] == [
        f"openldap_group://{_ENG}",
        f"openldap_group://{staff}",
    ]
    assert _ALICE not in mock_ldap.binds

    with pytest.raises(UnauthorizedError):
        await auth_service.refetch_groups(
            f"openldap_user://uid=bob,{USER_BASE_DN}"
        )
    for principal_id in (
        "garbage",
        f"openldap_group://{_ENG}",
        f"freeipa_user://{_ALICE}",
    ):
        with pytest.raises(InvalidPrincipalError):
            await auth_service.refetch_groups(principal_id)


@pytest.mark.asyncio
async def test_service_account_password(mock_ldap: MockLDAP) -> None:
    _add_alice(mock_ldap)
    ldap_config = directory_config(
        "openldap", service_account_password=SecretStr("wrong")
    )
    factory = Factory(ldap_config, mock_ldap)
    auth_service = factory.create_authentication_service()

    with pytest.raises(ServiceAccountBindError) as excinfo:
        await auth_service.authenticate("alice", USER_PASSWORD)
    assert excinfo.value.invalid_credentials

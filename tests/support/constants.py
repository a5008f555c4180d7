"""Constants used in test fixtures and setup."""

__all__ = [
    "BASE_DN",
    "GROUP_BASE_DN",
    "SERVICE_ACCOUNT_DN",
    "SERVICE_ACCOUNT_PASSWORD",
    "USER_BASE_DN",
    "USER_PASSWORD",
]

BASE_DN = "dc=example,dc=com"
"""Suffix of the test directory."""

GROUP_BASE_DN = f"ou=groups,{BASE_DN}"
"""Base DN under which test groups are created."""

SERVICE_ACCOUNT_DN = f"cn=porthor,{BASE_DN}"
"""DN of the service account, matching the test configuration files."""

SERVICE_ACCOUNT_PASSWORD = "service-password"
"""Password of the service account in the test configuration files."""

USER_BASE_DN = f"ou=people,{BASE_DN}"
"""Base DN under which test users are created."""

USER_PASSWORD = "some-password"
"""Default password of test users."""

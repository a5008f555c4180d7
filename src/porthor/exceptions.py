"""Exceptions for porthor."""

from __future__ import annotations

from fastapi import status
from safir.fastapi import ClientRequestError
from safir.models import ErrorLocation
from safir.slack.blockkit import SlackException

from .models.principal import Principal

__all__ = [
    "FilterSyntaxError",
    "GroupResolutionError",
    "InputValidationError",
    "InvalidOptionError",
    "InvalidPrincipalError",
    "LDAPError",
    "MissingRequiredError",
    "NotFoundError",
    "PermissionDeniedError",
    "ServiceAccountBindError",
    "UnauthorizedError",
]


class FilterSyntaxError(ValueError):
    """An LDAP search filter is not syntactically valid.

    Parameters
    ----------
    message
        Description of the problem.
    position
        Offset into the filter at which parsing failed.
    """

    def __init__(self, message: str, position: int) -> None:
        super().__init__(f"{message} at position {position}")
        self.position = position


class InputValidationError(ClientRequestError):
    """Represents an error attributable to the caller or its configuration.

    This is a thin wrapper around `~safir.fastapi.ClientRequestError` so that
    every caller-facing error carries an error code and status code that a
    transport layer can map to a response.
    """


class MissingRequiredError(InputValidationError):
    """A required input was not provided."""

    error = "missing_required"

    def __init__(self, message: str, field: str) -> None:
        super().__init__(message, ErrorLocation.body, [field])


class InvalidOptionError(InputValidationError):
    """A configuration setting is invalid.

    Raised for configured filter fragments that are not valid LDAP filters
    and for configured attribute names that do not match the attribute name
    grammar. The operation is always aborted.
    """

    error = "invalid_option"

    def __init__(self, message: str, field: str) -> None:
        super().__init__(message, ErrorLocation.body, [field])


class InvalidPrincipalError(InputValidationError):
    """A principal ID is malformed or uses an unknown scope."""

    error = "invalid_principal"

    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorLocation.path, ["principal_id"])


class UnauthorizedError(InputValidationError):
    """Authentication failed.

    The message is always generic so that callers cannot distinguish between
    an unknown user, an ambiguous user, and a wrong password. The underlying
    cause, if any, is chained for operator diagnostics.
    """

    error = "unauthorized"
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class PermissionDeniedError(InputValidationError):
    """The user authenticated but is not permitted access."""

    error = "permission_denied"
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Permission denied") -> None:
        super().__init__(message)


class NotFoundError(InputValidationError):
    """The named directory entry does not exist."""

    error = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class LDAPError(SlackException):
    """A bind or search failed for reasons not attributable to the user.

    This covers connectivity problems, protocol errors, and unexpected
    directory results. It is safe to retry at a higher layer.
    """


class ServiceAccountBindError(LDAPError):
    """Binding as the service account failed.

    Parameters
    ----------
    message
        Exception message.
    invalid_credentials
        Whether the server rejected the service account credentials, as
        opposed to failing for some other reason.
    """

    def __init__(self, message: str, *, invalid_credentials: bool) -> None:
        super().__init__(message)
        self.invalid_credentials = invalid_credentials


class GroupResolutionError(LDAPError):
    """Resolving group membership failed partway through.

    Parameters
    ----------
    message
        Exception message.
    user
        User whose groups were being resolved.
    groups
        Groups resolved before the failure, which the caller may choose to
        use.
    """

    def __init__(
        self, message: str, user: str | None, groups: list[Principal]
    ) -> None:
        super().__init__(message, user)
        self.groups = groups

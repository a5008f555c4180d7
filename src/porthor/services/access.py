"""Interface to the access-control decision."""

from __future__ import annotations

from typing import Protocol

from ..models.principal import Principal

__all__ = ["AccessChecker"]


class AccessChecker(Protocol):
    """Decides whether an authenticated user may log in.

    porthor only supplies the facts: the user's principal ID and resolved
    groups. The meaning of the access mode and allow list belongs entirely
    to the implementation.
    """

    async def check_access(
        self,
        access_mode: str,
        allowed_principal_ids: list[str],
        user_principal_id: str,
        groups: list[Principal],
    ) -> bool:
        """Return whether access is allowed."""

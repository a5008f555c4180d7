"""Construction and validation of LDAP search filters.

Every value interpolated into a filter that did not come from a fixed part
of the configuration is escaped with `escape_value`. Attribute names and
object classes taken from the configuration are interpolated unescaped, so
they are checked against the attribute description grammar of :rfc:`4512`
by `sanitize_attribute`. Filter fragments taken from the configuration are
parsed with `parse_filter` before use so that a malformed fragment can never
change the structure of the surrounding filter.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

from bonsai.utils import escape_filter_exp

from .config import DirectoryConfig
from .constants import (
    GROUP_INTEGER_SEARCH_ATTRIBUTE,
    OBJECT_CLASS,
    USER_INTEGER_SEARCH_ATTRIBUTE,
)
from .exceptions import FilterSyntaxError, InvalidOptionError

_ATTRIBUTE_REGEX = re.compile(
    r"^(?:[A-Za-z][A-Za-z0-9-]*|[0-9]+(?:\.[0-9]+)*)(?:;[A-Za-z0-9-]+)*$"
)
"""Attribute description: descriptor or numeric OID plus options."""

_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")

__all__ = [
    "AndFilter",
    "ComparisonFilter",
    "EqualityFilter",
    "ExtensibleFilter",
    "Filter",
    "FilterBuilder",
    "NotFilter",
    "OrFilter",
    "PresenceFilter",
    "SubstringFilter",
    "escape_value",
    "parse_filter",
    "sanitize_attribute",
    "validate_filter",
]


@dataclass(frozen=True)
class AndFilter:
    """Conjunction of filters."""

    children: tuple[Filter, ...]


@dataclass(frozen=True)
class OrFilter:
    """Disjunction of filters."""

    children: tuple[Filter, ...]


@dataclass(frozen=True)
class NotFilter:
    """Negation of a filter."""

    child: Filter


@dataclass(frozen=True)
class PresenceFilter:
    """Matches entries that have any value for the attribute."""

    attribute: str


@dataclass(frozen=True)
class EqualityFilter:
    """Matches entries with a value equal to the (unescaped) value."""

    attribute: str
    value: str


@dataclass(frozen=True)
class SubstringFilter:
    """Matches entries with a value matching a wildcard pattern."""

    attribute: str
    initial: str | None
    any: tuple[str, ...]
    final: str | None


@dataclass(frozen=True)
class ComparisonFilter:
    """Ordering or approximate match (``>=``, ``<=``, or ``~=``)."""

    attribute: str
    operator: str
    value: str


@dataclass(frozen=True)
class ExtensibleFilter:
    """Extensible match such as ``(cn:dn:caseExactMatch:=Fred)``."""

    attribute: str | None
    dn_attributes: bool
    rule: str | None
    value: str


Filter = (
    AndFilter
    | OrFilter
    | NotFilter
    | PresenceFilter
    | EqualityFilter
    | SubstringFilter
    | ComparisonFilter
    | ExtensibleFilter
)
"""Any node of a parsed search filter."""


def escape_value(value: str) -> str:
    """Escape a value for safe interpolation into a search filter.

    Filter metacharacters (``*``, ``(``, ``)``, ``\\``, and NUL) are replaced
    by their hex escapes so that they match literally.

    bonsai escapes NUL as ``\\0``, which is not a valid escape, so that one
    is widened to two hex digits. No other escape bonsai produces starts
    with ``\\0``.
    """
    return escape_filter_exp(value).replace("\\0", "\\00")


def sanitize_attribute(name: str, setting: str) -> str:
    """Check that a configured attribute name is safe to interpolate.

    Parameters
    ----------
    name
        Attribute name or object class from the configuration.
    setting
        Name of the configuration setting, for error reporting.

    Returns
    -------
    str
        The attribute name, stripped of surrounding whitespace.

    Raises
    ------
    InvalidOptionError
        Raised if the name is not a valid attribute description.
    """
    name = name.strip()
    if not _ATTRIBUTE_REGEX.match(name):
        msg = f"Invalid attribute name {name!r} in {setting}"
        raise InvalidOptionError(msg, setting)
    return name


def parse_filter(text: str) -> Filter:
    """Parse an LDAP search filter in :rfc:`4515` string form.

    Parameters
    ----------
    text
        The filter to parse. The whole string must be a single filter.

    Returns
    -------
    Filter
        Parsed representation of the filter, with escapes decoded.

    Raises
    ------
    FilterSyntaxError
        Raised if the filter is not syntactically valid.
    """
    return _FilterParser(text).parse()


def validate_filter(fragment: str, setting: str) -> str:
    """Validate a filter fragment from the configuration.

    Parameters
    ----------
    fragment
        Configured filter, such as a login filter override.
    setting
        Name of the configuration setting, for error reporting.

    Returns
    -------
    str
        The fragment, unchanged.

    Raises
    ------
    InvalidOptionError
        Raised if the fragment is not a single well-formed filter.
    """
    try:
        parse_filter(fragment)
    except FilterSyntaxError as e:
        msg = f"Invalid {setting}: {e!s}"
        raise InvalidOptionError(msg, setting) from e
    return fragment


class FilterBuilder:
    """Build the search filters used to authenticate and resolve principals.

    Parameters
    ----------
    config
        Directory configuration supplying attribute names, object classes,
        and filter overrides.
    """

    def __init__(self, config: DirectoryConfig) -> None:
        self._config = config

    def user_object(self) -> str:
        """Filter matching any user entry."""
        return self._object_class(self._config.user_object_class, "user")

    def group_object(self) -> str:
        """Filter matching any group entry."""
        return self._object_class(self._config.group_object_class, "group")

    def user_login(self, username: str) -> str:
        """Filter locating the entry of the user logging in.

        Parameters
        ----------
        username
            Login name supplied by the user.

        Raises
        ------
        InvalidOptionError
            Raised if the configured login filter is malformed or an
            attribute name is invalid.
        """
        login_filter = self._config.user_login_filter or ""
        if login_filter:
            validate_filter(login_filter, "userLoginFilter")
        attr = sanitize_attribute(
            self._config.user_login_attribute, "userLoginAttribute"
        )
        value = escape_value(username)
        return f"(&{self.user_object()}({attr}={value}){login_filter})"

    def groups_by_dn(self, dns: Sequence[str]) -> str:
        """Filter matching the groups with any of the given DNs."""
        attr = sanitize_attribute(
            self._config.group_dn_attribute, "groupDnAttribute"
        )
        clauses = "".join(f"({attr}={escape_value(dn)})" for dn in dns)
        return f"(&{self.group_object()}(|{clauses}))"

    def groups_with_member(self, member: str) -> str:
        """Filter matching groups whose membership attribute holds a value.

        Parameters
        ----------
        member
            Member reference, such as a user DN, a user's ``entryDN``, or
            the DN of a child group.
        """
        attr = sanitize_attribute(
            self._config.group_member_mapping_attribute,
            "groupMemberMappingAttribute",
        )
        return f"(&({attr}={escape_value(member)}){self.group_object()})"

    def user_search(self, name: str) -> str:
        """Filter for a prefix search of users.

        Every configured user search attribute is matched as a prefix except
        ``uidNumber``, which only supports an exact match.
        """
        search_filter = self._config.user_search_filter or ""
        if search_filter:
            validate_filter(search_filter, "userSearchFilter")
        value = escape_value(name)
        clauses = []
        for attr in self._config.user_search_attribute.split("|"):
            attr = sanitize_attribute(attr, "userSearchAttribute")
            clauses.append(
                self._prefix_match(attr, value, USER_INTEGER_SEARCH_ATTRIBUTE)
            )
        return (
            f"(&{self.user_object()}(|{''.join(clauses)}){search_filter})"
        )

    def group_search(self, name: str) -> str:
        """Filter for a prefix search of groups."""
        search_filter = self._config.group_search_filter or ""
        if search_filter:
            validate_filter(search_filter, "groupSearchFilter")
        attr = sanitize_attribute(
            self._config.group_search_attribute, "groupSearchAttribute"
        )
        clause = self._prefix_match(
            attr, escape_value(name), GROUP_INTEGER_SEARCH_ATTRIBUTE
        )
        return f"(&{self.group_object()}{clause}{search_filter})"

    def _object_class(self, object_class: str, kind: str) -> str:
        setting = f"{kind}ObjectClass"
        return f"({OBJECT_CLASS}={sanitize_attribute(object_class, setting)})"

    def _prefix_match(
        self, attr: str, escaped_value: str, integer_attr: str
    ) -> str:
        if attr == integer_attr:
            return f"({attr}={escaped_value})"
        return f"({attr}={escaped_value}*)"


class _FilterParser:
    """Recursive-descent parser for the string form of search filters."""

    def __init__(self, text: str) -> None:
        self._text = text
        self._pos = 0

    def parse(self) -> Filter:
        result = self._filter()
        if self._pos != len(self._text):
            raise FilterSyntaxError("Unexpected text after filter", self._pos)
        return result

    def _peek(self) -> str:
        if self._pos >= len(self._text):
            raise FilterSyntaxError("Unexpected end of filter", self._pos)
        return self._text[self._pos]

    def _expect(self, char: str) -> None:
        if self._peek() != char:
            raise FilterSyntaxError(f"Expected {char!r}", self._pos)
        self._pos += 1

    def _filter(self) -> Filter:
        self._expect("(")
        match self._peek():
            case "&":
                self._pos += 1
                result: Filter = AndFilter(self._filter_list())
            case "|":
                self._pos += 1
                result = OrFilter(self._filter_list())
            case "!":
                self._pos += 1
                result = NotFilter(self._filter())
            case _:
                result = self._item()
        self._expect(")")
        return result

    def _filter_list(self) -> tuple[Filter, ...]:
        children = []
        while self._peek() == "(":
            children.append(self._filter())
        if not children:
            raise FilterSyntaxError("Empty filter list", self._pos)
        return tuple(children)

    def _item(self) -> Filter:
        start = self._pos
        while self._peek() not in "=~<>:()":
            self._pos += 1
        attribute = self._text[start : self._pos]
        if self._peek() == ":":
            return self._extensible(attribute or None, start)
        self._check_attribute(attribute, start)

        operator = self._operator()
        value_start = self._pos
        pieces = self._value(allow_wildcard=operator == "=")
        if len(pieces) == 1:
            if operator == "=":
                return EqualityFilter(attribute, pieces[0])
            return ComparisonFilter(attribute, operator, pieces[0])
        if len(pieces) == 2 and pieces == ["", ""]:
            return PresenceFilter(attribute)
        if any(p == "" for p in pieces[1:-1]):
            raise FilterSyntaxError("Consecutive wildcards", value_start)
        return SubstringFilter(
            attribute=attribute,
            initial=pieces[0] or None,
            any=tuple(pieces[1:-1]),
            final=pieces[-1] or None,
        )

    def _operator(self) -> str:
        char = self._peek()
        if char == "=":
            self._pos += 1
            return "="
        if char in "~<>":
            self._pos += 1
            self._expect("=")
            return char + "="
        raise FilterSyntaxError("Expected filter operator", self._pos)

    def _extensible(self, attribute: str | None, start: int) -> Filter:
        if attribute is not None:
            self._check_attribute(attribute, start)
        dn_attributes = False
        rule = None
        while True:
            self._expect(":")
            if self._peek() == "=":
                self._pos += 1
                break
            token_start = self._pos
            while self._peek() not in ":=()":
                self._pos += 1
            token = self._text[token_start : self._pos]
            if token.lower() == "dn" and not dn_attributes and rule is None:
                dn_attributes = True
            elif rule is None:
                self._check_attribute(token, token_start)
                rule = token
            else:
                raise FilterSyntaxError("Unexpected token", token_start)
        if attribute is None and rule is None:
            raise FilterSyntaxError("Missing matching rule", start)
        pieces = self._value(allow_wildcard=False)
        return ExtensibleFilter(attribute, dn_attributes, rule, pieces[0])

    def _value(self, *, allow_wildcard: bool) -> list[str]:
        """Read an assertion value up to the closing parenthesis.

        Returns the value split on unescaped ``*``, with escapes decoded.
        """
        pieces = []
        current = bytearray()
        while self._peek() != ")":
            char = self._text[self._pos]
            if char in "(\0":
                raise FilterSyntaxError("Unescaped character", self._pos)
            if char == "\\":
                digits = self._text[self._pos + 1 : self._pos + 3]
                if len(digits) != 2 or not set(digits) <= _HEX_DIGITS:
                    raise FilterSyntaxError("Invalid escape", self._pos)
                current.append(int(digits, 16))
                self._pos += 3
                continue
            if char == "*":
                if not allow_wildcard:
                    raise FilterSyntaxError("Unexpected wildcard", self._pos)
                pieces.append(current.decode(errors="replace"))
                current = bytearray()
            else:
                current.extend(char.encode())
            self._pos += 1
        pieces.append(current.decode(errors="replace"))
        return pieces

    def _check_attribute(self, attribute: str, position: int) -> None:
        if not _ATTRIBUTE_REGEX.match(attribute):
            raise FilterSyntaxError("Invalid attribute description", position)

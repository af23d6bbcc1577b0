"""
Role name normalization.

Role names arrive spelled in several ways (``head-teacher`` from tokens,
``HEAD_TEACHER`` from constants, ``head_teacher`` from older records). Every
comparison goes through :class:`RoleName`, whose equality and hash use a
single canonical key.
"""

import re
from typing import Iterable, FrozenSet, Union

_SEPARATORS = re.compile(r"[\s\-]+")


class RoleName:
    """
    Immutable role identifier compared by canonical key.

    ``str()`` returns the name as it was supplied (trimmed); comparisons and
    hashing use the canonical key (uppercase, ``-`` and whitespace folded
    into ``_``). A RoleName never equals a plain ``str``.
    """

    __slots__ = ("_display", "_canonical")

    def __init__(self, name: str):
        if not isinstance(name, str):
            raise TypeError(f"Role name must be a string, got {type(name).__name__}")
        display = name.strip()
        if not display:
            raise ValueError("Role name cannot be empty")
        object.__setattr__(self, "_display", display)
        object.__setattr__(self, "_canonical", _SEPARATORS.sub("_", display).upper())

    def __setattr__(self, key, value):
        raise AttributeError("RoleName is immutable")

    @property
    def canonical(self) -> str:
        return self._canonical

    @property
    def display(self) -> str:
        return self._display

    @property
    def slug(self) -> str:
        """External lowercase-hyphen form, e.g. ``head-teacher``."""
        return self._canonical.lower().replace("_", "-")

    def __eq__(self, other):
        if isinstance(other, RoleName):
            return self._canonical == other._canonical
        return NotImplemented

    def __ne__(self, other):
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    def __hash__(self):
        return hash(("RoleName", self._canonical))

    def __str__(self):
        return self._display

    def __repr__(self):
        return f"RoleName({self._display!r})"


def canonicalize(name: Union[str, RoleName]) -> RoleName:
    """Return the RoleName for ``name``; RoleName inputs pass through."""
    if isinstance(name, RoleName):
        return name
    return RoleName(name)


def try_canonicalize(name) -> Union[RoleName, None]:
    """Like :func:`canonicalize` but returns None for blank or non-string input."""
    try:
        return canonicalize(name)
    except (TypeError, ValueError):
        return None


def canonical_set(names: Iterable[Union[str, RoleName]]) -> FrozenSet[RoleName]:
    return frozenset(canonicalize(n) for n in names)


ADMIN = RoleName("admin")
HEAD_TEACHER = RoleName("head-teacher")
TEACHER = RoleName("teacher")
STUDENT = RoleName("student")
ACCOUNTS = RoleName("accounts")
PARENT = RoleName("parent")


def is_admin(name) -> bool:
    """True when ``name`` canonicalizes to the superuser role."""
    role = try_canonicalize(name)
    return role is not None and role == ADMIN

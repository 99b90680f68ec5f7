"""Validated Android application identifiers."""

from __future__ import annotations

import string
from dataclasses import dataclass

ANDROID_PACKAGE = "android"
MIN_COMPONENTS = 3

_LETTERS = frozenset(string.ascii_letters.encode("ascii"))
_WORD_CHARS = frozenset((string.ascii_letters + string.digits + "_").encode("ascii"))


def is_package_component(component: bytes) -> bool:
    """Return True for a non-empty ``[A-Za-z][A-Za-z0-9_]*`` byte string."""

    if not component or component[0] not in _LETTERS:
        return False
    return all(byte in _WORD_CHARS for byte in component[1:])


@dataclass(slots=True, frozen=True)
class PackageId:
    """A string known to be a syntactically valid application ID.

    Instances are only obtained through :meth:`parse`; comparison and hashing
    use the underlying string.
    """

    value: str

    @classmethod
    def parse(cls, candidate: str) -> PackageId | None:
        # https://developer.android.com/build/configure-app-module#set-application-id
        components = candidate.encode("utf-8", errors="replace").split(b".")
        if len(components) < MIN_COMPONENTS:
            return None
        if not all(is_package_component(component) for component in components):
            return None
        return cls(candidate)

    def __str__(self) -> str:
        return self.value


def is_known_package(name: str) -> bool:
    """Accept valid identifiers plus the ``android`` framework package.

    ``android`` shows up in ``pm list packages`` output even though it fails
    the identifier grammar.
    """

    return name == ANDROID_PACKAGE or PackageId.parse(name) is not None

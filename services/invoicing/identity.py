"""Owner identity resolution.

Clients and companies are referenced inconsistently across records: by
their auth uid, their email, their document id, or a legacy ``uId``
field. Two references denote the same owner when they share any
identifier value, directly or through a chain of records that link them.
``IdentityIndex`` computes those equivalence classes with union-find.
"""

from collections.abc import Iterable
from typing import Any

IDENTITY_FIELDS = ("uid", "email", "id", "uId")

# Preference order for the single identifier that represents an owner.
PREFERRED_IDENTITY_FIELDS = ("uid", "email", "id")


def _text(value: Any) -> str | None:
    if isinstance(value, str):
        return value.strip() or None
    return None


def preferred_identifier(data: dict[str, Any] | None) -> str | None:
    """uid, then email, then id."""
    if not data:
        return None
    for name in PREFERRED_IDENTITY_FIELDS:
        value = _text(data.get(name))
        if value:
            return value
    return None


def identity_keys(data: dict[str, Any] | None) -> set[str]:
    """Every identifier value carried by an owner record or snapshot."""
    if not data:
        return set()
    return {value for name in IDENTITY_FIELDS if (value := _text(data.get(name)))}


def build_lookup(records: Iterable[dict[str, Any]]) -> dict[str, dict[str, Any]]:
    """Map every identifier variant to its owner record (first record wins)."""
    lookup: dict[str, dict[str, Any]] = {}
    for record in records:
        for key in identity_keys(record):
            lookup.setdefault(key, record)
    return lookup


def find_owner(records: Iterable[dict[str, Any]], identity: str) -> dict[str, Any] | None:
    return next((r for r in records if identity in identity_keys(r)), None)


class IdentityIndex:
    """Union-find over identifier values.

    Every call to ``link`` declares that a group of identifiers belongs to
    one owner. ``canonical`` returns a stable representative of the owner's
    class.
    """

    def __init__(self) -> None:
        self._parent: dict[str, str] = {}

    def _root(self, key: str) -> str:
        self._parent.setdefault(key, key)
        root = key
        while self._parent[root] != root:
            root = self._parent[root]
        # Path compression
        while self._parent[key] != root:
            self._parent[key], key = root, self._parent[key]
        return root

    def link(self, keys: Iterable[str]) -> None:
        roots = sorted({self._root(k) for k in keys})
        if not roots:
            return
        # Smallest key wins so canonical() is independent of insertion order.
        head = roots[0]
        for other in roots[1:]:
            self._parent[other] = head

    def link_records(self, records: Iterable[dict[str, Any]]) -> None:
        for record in records:
            self.link(identity_keys(record))

    def canonical(self, keys: Iterable[str]) -> str | None:
        """Representative of the class containing ``keys`` (linked first)."""
        keys = list(keys)
        if not keys:
            return None
        self.link(keys)
        return self._root(keys[0])

    def same_owner(self, left: Iterable[str], right: Iterable[str]) -> bool:
        left_root = self.canonical(left)
        right_root = self.canonical(right)
        return left_root is not None and left_root == right_root

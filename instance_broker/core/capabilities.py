"""Capability-set helpers.

A capability set is a ``frozenset`` of opaque feature identifiers. An
installation can serve a request when its set covers every requested id.
"""

from __future__ import annotations

from typing import AbstractSet, FrozenSet, Iterable, Optional

CapabilitySet = FrozenSet[str]

EMPTY: CapabilitySet = frozenset()


def capability_set(ids: Optional[Iterable[str]] = None) -> CapabilitySet:
    if ids is None:
        return EMPTY
    if isinstance(ids, str):
        return frozenset((ids,))
    return frozenset(ids)


def satisfies(available: AbstractSet[str], required: AbstractSet[str]) -> bool:
    return available.issuperset(required)


def missing(available: AbstractSet[str], required: Iterable[str]) -> list:
    """Required ids absent from ``available``, in a stable order for messages."""
    return sorted(set(required) - set(available))

# Copyright (c) 2025-2026 Datalayer, Inc.
# Distributed under the terms of the Modified BSD License.

"""
Backend registry.

An insertion-ordered table of ``BackendDescriptor`` keyed by backend name.
It holds no process state.
"""

import logging
from collections.abc import Iterable, Iterator

from .config import BackendDescriptor
from .exceptions import PrefixConflictError

logger = logging.getLogger(__name__)

PREFIX_SEPARATOR = "_"


def prefixes_overlap(first: str, second: str) -> bool:
    """Return True if some tool name would match both prefixes."""
    first_marker = first + PREFIX_SEPARATOR
    second_marker = second + PREFIX_SEPARATOR
    return first_marker.startswith(second_marker) or second_marker.startswith(first_marker)


class BackendRegistry:
    """Static table of backend descriptors."""

    def __init__(
        self,
        descriptors: Iterable[BackendDescriptor] = (),
        allow_overlapping_prefixes: bool = False,
    ) -> None:
        self.allow_overlapping_prefixes = allow_overlapping_prefixes
        self._backends: dict[str, BackendDescriptor] = {}
        for descriptor in descriptors:
            self.register(descriptor)

    def register(self, descriptor: BackendDescriptor) -> None:
        """
        Insert or replace a descriptor.

        Replacing keeps the backend's original position.

        Raises:
            PrefixConflictError: If the prefix overlaps another backend's prefix
                and overlapping prefixes are not allowed.
        """
        for other in self._backends.values():
            if other.name == descriptor.name:
                continue
            if prefixes_overlap(descriptor.tool_prefix, other.tool_prefix):
                if not self.allow_overlapping_prefixes:
                    raise PrefixConflictError(descriptor.name, descriptor.tool_prefix, other.name)
                logger.warning(
                    f"Tool prefix '{descriptor.tool_prefix}' of {descriptor.name} overlaps "
                    f"with {other.name}; the earlier backend wins on resolution"
                )

        if descriptor.name in self._backends:
            logger.debug(f"Replacing backend descriptor: {descriptor.name}")
        self._backends[descriptor.name] = descriptor

    def unregister(self, name: str) -> BackendDescriptor | None:
        return self._backends.pop(name, None)

    def get(self, name: str) -> BackendDescriptor | None:
        return self._backends.get(name)

    def all(self) -> list[BackendDescriptor]:
        """Descriptors in registration order."""
        return list(self._backends.values())

    def names(self) -> list[str]:
        return list(self._backends)

    def __contains__(self, name: object) -> bool:
        return name in self._backends

    def __iter__(self) -> Iterator[BackendDescriptor]:
        return iter(self.all())

    def __len__(self) -> int:
        return len(self._backends)

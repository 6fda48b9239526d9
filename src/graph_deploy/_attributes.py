"""The write-once store of runtime attributes."""

import threading
from collections.abc import Iterator, Mapping
from types import MappingProxyType

from graph_deploy._errors import AttributeOverwrite
from graph_deploy._template import Attr

__all__ = ["ResolvedAttributeSet"]


class ResolvedAttributeSet(Mapping[Attr, str]):
    """Runtime attributes of realized resources.

    The set is append-only: attributes are published once per resource,
    when it is realized, and never change afterwards. Readers only look up
    attributes of resources that were realized before them, so a single
    lock around `publish` is the only synchronization needed.

    Example:
        Publishing and reading attributes::

            resolved = ResolvedAttributeSet()
            resolved.publish("db", {"private_address": "10.0.0.5"})
            assert resolved[Attr("db", "private_address")] == "10.0.0.5"
            assert "db" in resolved.resources()
    """

    def __init__(self) -> None:
        self._values: dict[Attr, str] = {}
        self._resources: dict[str, Mapping[str, str]] = {}
        self._lock = threading.Lock()

    def publish(self, resource: str, attributes: Mapping[str, str]) -> None:
        """Record the runtime attributes of a newly realized resource.

        Raises:
            AttributeOverwrite: If attributes were already published for
                ``resource``.
        """
        with self._lock:
            if resource in self._resources:
                raise AttributeOverwrite(
                    f"attributes of {resource!r} were already published", resource
                )
            frozen = MappingProxyType(dict(attributes))
            for name, value in frozen.items():
                self._values[Attr(resource, name)] = value
            self._resources[resource] = frozen

    def attributes_of(self, resource: str) -> Mapping[str, str]:
        """Return a read-only view of one resource's attributes."""
        return self._resources[resource]

    def resources(self) -> tuple[str, ...]:
        """Names of resources with published attributes, in publish order."""
        return tuple(self._resources)

    def __getitem__(self, key: Attr) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[Attr]:
        return iter(list(self._values))

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"ResolvedAttributeSet({dict(self._values)!r})"

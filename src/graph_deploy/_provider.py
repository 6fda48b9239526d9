"""
The provider interface.

A provider is the external collaborator that creates resources: network
rule sets (security groups) and compute instances. The scheduler calls a
provider from worker threads, one call per resource, and never issues two
calls for the same resource concurrently.

Providers signal failures with `ProviderTransientError` (the call may be
retried) or `ProviderFatalError` (it must not be). Creation calls must be
safe to retry after a transient failure.
"""

import abc
import ipaddress
import itertools
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from graph_deploy._types import NetworkRule

__all__ = [
    "InstanceInfo",
    "Provider",
    "InMemoryProvider",
]


@dataclass(frozen=True)
class InstanceInfo:
    """Runtime attributes returned for a created compute instance."""

    instance_id: str
    private_address: str
    public_address: str

    def attributes(self) -> dict[str, str]:
        return {
            "instance_id": self.instance_id,
            "private_address": self.private_address,
            "public_address": self.public_address,
        }


class Provider(abc.ABC):
    """Creates resources on an infrastructure platform."""

    @abc.abstractmethod
    def create_network_rule_set(
        self, name: str, rules: Sequence[NetworkRule], description: str = ""
    ) -> str:
        """Create a network rule set and return its id."""

    @abc.abstractmethod
    def create_compute_instance(
        self,
        name: str,
        image: str,
        size: str,
        rule_set_ids: Sequence[str],
        bootstrap: str,
        tags: Mapping[str, str],
    ) -> InstanceInfo:
        """Create a compute instance and return its runtime attributes.

        Args:
            name: Resource name, used for tagging.
            image: Image reference.
            size: Instance size.
            rule_set_ids: Provider ids of the attached rule sets.
            bootstrap: The fully rendered bootstrap payload.
            tags: Extra tags.
        """


@dataclass
class _Call:
    method: str
    name: str
    arguments: dict = field(default_factory=dict)


class InMemoryProvider(Provider):
    """A deterministic provider that keeps everything in memory.

    Rule sets get ids ``sg-00000001``, ``sg-00000002``, ...; instances get
    ids ``i-00000001``, ... with private addresses from ``10.0.0.0/24`` and
    public addresses from ``203.0.113.0/24``, in creation order.

    Every call is recorded in `calls`, which makes this provider the
    workhorse of the test suite.
    """

    def __init__(
        self,
        private_network: str = "10.0.0.0/24",
        public_network: str = "203.0.113.0/24",
    ) -> None:
        self.calls: list[_Call] = []
        self.rule_sets: dict[str, tuple[NetworkRule, ...]] = {}
        self.instances: dict[str, InstanceInfo] = {}
        self._lock = threading.Lock()
        self._rule_set_ids = itertools.count(1)
        self._instance_ids = itertools.count(1)
        self._private = ipaddress.ip_network(private_network).hosts()
        self._public = ipaddress.ip_network(public_network).hosts()

    def create_network_rule_set(
        self, name: str, rules: Sequence[NetworkRule], description: str = ""
    ) -> str:
        with self._lock:
            self.calls.append(_Call("create_network_rule_set", name, {"rules": tuple(rules)}))
            rule_set_id = f"sg-{next(self._rule_set_ids):08x}"
            self.rule_sets[rule_set_id] = tuple(rules)
        return rule_set_id

    def create_compute_instance(
        self,
        name: str,
        image: str,
        size: str,
        rule_set_ids: Sequence[str],
        bootstrap: str,
        tags: Mapping[str, str],
    ) -> InstanceInfo:
        with self._lock:
            self.calls.append(
                _Call(
                    "create_compute_instance",
                    name,
                    {
                        "image": image,
                        "size": size,
                        "rule_set_ids": tuple(rule_set_ids),
                        "bootstrap": bootstrap,
                        "tags": dict(tags),
                    },
                )
            )
            info = InstanceInfo(
                instance_id=f"i-{next(self._instance_ids):08x}",
                private_address=str(next(self._private)),
                public_address=str(next(self._public)),
            )
            self.instances[info.instance_id] = info
        return info

    def call(self, name: str) -> _Call:
        """Return the last call made for resource ``name``."""
        for recorded in reversed(self.calls):
            if recorded.name == name:
                return recorded
        raise KeyError(name)

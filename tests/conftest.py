"""Shared fixtures for graph_deploy tests."""

import threading
from collections.abc import Mapping, Sequence

import pytest

from graph_deploy import (
    Attr,
    Catalog,
    ComputeInstance,
    InMemoryProvider,
    InstanceInfo,
    NetworkRule,
    NetworkRuleSet,
    Output,
    Template,
)


def instance(name: str, bootstrap: str = "", rule_sets: tuple[str, ...] = ()) -> ComputeInstance:
    return ComputeInstance(
        name=name,
        image="ami-123",
        size="t2.micro",
        network_rule_sets=rule_sets,
        bootstrap=Template.parse(bootstrap),
    )


def rule_set(name: str, port: int = 22) -> NetworkRuleSet:
    return NetworkRuleSet(name=name, rules=(NetworkRule("ingress", "tcp", port, port),))


class ScriptedProvider(InMemoryProvider):
    """An in-memory provider that raises scripted errors per resource.

    ``script`` maps a resource name to a list of exceptions; each call for
    that resource pops the first one and raises it, until the list is empty.
    """

    def __init__(self, script: Mapping[str, list[Exception]] | None = None) -> None:
        super().__init__()
        self.script = {name: list(errors) for name, errors in (script or {}).items()}
        self.attempts: dict[str, int] = {}
        self._script_lock = threading.Lock()

    def _maybe_fail(self, name: str) -> None:
        with self._script_lock:
            self.attempts[name] = self.attempts.get(name, 0) + 1
            errors = self.script.get(name)
            if errors:
                raise errors.pop(0)

    def create_network_rule_set(self, name, rules, description=""):
        self._maybe_fail(name)
        return super().create_network_rule_set(name, rules, description)

    def create_compute_instance(
        self,
        name: str,
        image: str,
        size: str,
        rule_set_ids: Sequence[str],
        bootstrap: str,
        tags: Mapping[str, str],
    ) -> InstanceInfo:
        self._maybe_fail(name)
        return super().create_compute_instance(name, image, size, rule_set_ids, bootstrap, tags)


@pytest.fixture
def two_tier() -> Catalog:
    """sg-db, db and ms, where ms's bootstrap needs db's private address.

    db has no dependencies of its own, so it shares batch 0 with sg-db.
    """
    return Catalog(
        [
            NetworkRuleSet(
                name="sg-db",
                rules=(NetworkRule("ingress", "tcp", 27017, 27017, ("10.0.0.0/16",)),),
            ),
            instance("db"),
            instance("ms", "MONGO_URL=mongodb://${db.private_address}:27017\n"),
        ],
        [Output("db_private_ip", Attr("db", "private_address"))],
    )

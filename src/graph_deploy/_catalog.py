"""
The resource catalog.

A `Catalog` indexes resource descriptors by name, in declaration order,
together with the declared outputs. Building a catalog validates it
statically: every rule set attachment, template placeholder and output
must name an existing resource and an attribute that resource's kind
exposes. Nothing is provisioned and nothing is mutated.

Catalogs are usually loaded from a YAML declaration document::

    resources:
      sg-db:
        kind: network-rule-set
        rules:
          - {direction: ingress, protocol: tcp, ports: 27017, cidrs: [10.0.0.0/16]}
      db:
        kind: compute-instance
        image: ami-0abcdef1234567890
        size: t2.micro
        network_rule_sets: [sg-db]
      ms:
        kind: compute-instance
        image: ami-0abcdef1234567890
        size: t2.micro
        bootstrap: |
          export MONGO_URL=mongodb://${db.private_address}:27017
    outputs:
      db_private_ip: db.private_address
"""

import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from graph_deploy._errors import InvalidDeclaration, InvalidPlaceholder, UnknownReference
from graph_deploy._template import RESOURCE_NAME, Attr, Template
from graph_deploy._types import (
    ComputeInstance,
    NetworkRule,
    NetworkRuleSet,
    ResourceDescriptor,
    ResourceKind,
)

__all__ = [
    "Output",
    "Catalog",
    "load_catalog",
]

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class Output:
    """A named projection of one runtime attribute."""

    name: str
    ref: Attr


class Catalog:
    """A validated, declaration-ordered collection of resources and outputs.

    Args:
        resources: Resource descriptors, in declaration order.
        outputs: Declared outputs, in declaration order.

    Raises:
        InvalidDeclaration: On duplicate resource or output names, or a
            resource name that placeholders cannot refer to.
        UnknownReference: If a rule set attachment, placeholder or output
            names a resource that does not exist, or an attachment names a
            resource that is not a rule set.
        InvalidPlaceholder: If a placeholder or output names an attribute
            the target resource does not expose.
    """

    def __init__(
        self,
        resources: Iterable[ResourceDescriptor],
        outputs: Iterable[Output] = (),
    ) -> None:
        self._resources: dict[str, ResourceDescriptor] = {}
        for resource in resources:
            if not RESOURCE_NAME.fullmatch(resource.name):
                raise InvalidDeclaration(
                    f"invalid resource name {resource.name!r}, use letters, digits, '_' and '-'",
                    resource.name,
                )
            if resource.name in self._resources:
                raise InvalidDeclaration(f"duplicate resource {resource.name!r}", resource.name)
            self._resources[resource.name] = resource

        self._outputs: dict[str, Output] = {}
        for output in outputs:
            if output.name in self._outputs:
                raise InvalidDeclaration(f"duplicate output {output.name!r}")
            self._outputs[output.name] = output

        self._validate()
        LOG.debug(
            "Catalog with %d resources and %d outputs validated",
            len(self._resources),
            len(self._outputs),
        )

    def _validate(self) -> None:
        for resource in self._resources.values():
            if isinstance(resource, ComputeInstance):
                for rule_set in resource.network_rule_sets:
                    target = self._resources.get(rule_set)
                    if not isinstance(target, NetworkRuleSet):
                        raise UnknownReference(resource.name, rule_set, "network_rule_sets")
                for ref in resource.bootstrap.references():
                    self._check_ref(resource.name, ref, "bootstrap")
        for output in self._outputs.values():
            self._check_ref(None, output.ref, f"output {output.name!r}")

    def _check_ref(self, owner: str | None, ref: Attr, context: str) -> None:
        target = self._resources.get(ref.resource)
        if target is None:
            raise UnknownReference(owner, ref.resource, context)
        if ref.name not in target.exposes:
            raise InvalidPlaceholder(owner, str(ref), target.exposes)

    @property
    def outputs(self) -> tuple[Output, ...]:
        return tuple(self._outputs.values())

    def names(self) -> tuple[str, ...]:
        """Resource names in declaration order."""
        return tuple(self._resources)

    def get(self, name: str) -> ResourceDescriptor | None:
        return self._resources.get(name)

    def __getitem__(self, name: str) -> ResourceDescriptor:
        return self._resources[name]

    def __contains__(self, name: object) -> bool:
        return name in self._resources

    def __iter__(self) -> Iterator[ResourceDescriptor]:
        return iter(self._resources.values())

    def __len__(self) -> int:
        return len(self._resources)

    @classmethod
    def from_document(cls, document: Mapping[str, Any], base_path: Path | None = None) -> "Catalog":
        """Build a catalog from a parsed declaration document.

        Args:
            document: The parsed document, with ``resources`` and optional
                ``outputs`` sections.
            base_path: Directory that ``bootstrap_file`` entries are
                relative to. Defaults to the current directory.

        Raises:
            InvalidDeclaration: If the document is malformed.
        """
        if not isinstance(document, Mapping):
            raise InvalidDeclaration("declaration document must be a mapping")
        declared = document.get("resources")
        if not isinstance(declared, Mapping) or not declared:
            raise InvalidDeclaration("declaration document has no resources")

        base_path = base_path or Path.cwd()
        resources = [
            _parse_resource(str(name), entry, base_path) for name, entry in declared.items()
        ]

        outputs = []
        for name, ref in (document.get("outputs") or {}).items():
            try:
                outputs.append(Output(str(name), Attr.parse(str(ref))))
            except ValueError as e:
                raise InvalidDeclaration(f"output {name!r}: {e}") from e

        return cls(resources, outputs)


def load_catalog(path: str | Path) -> Catalog:
    """Load and validate a catalog from a YAML declaration file."""
    path = Path(path)
    LOG.debug("Loading declarations from %s", path)
    try:
        document = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise InvalidDeclaration(f"unable to parse {path}: {e}") from e
    return Catalog.from_document(document, base_path=path.parent)


def _parse_resource(name: str, entry: Any, base_path: Path) -> ResourceDescriptor:
    if not isinstance(entry, Mapping):
        raise InvalidDeclaration("resource declaration must be a mapping", name)
    try:
        kind = ResourceKind(entry.get("kind"))
    except ValueError:
        raise InvalidDeclaration(f"unknown resource kind {entry.get('kind')!r}", name) from None

    if kind is ResourceKind.NETWORK_RULE_SET:
        rules = tuple(_parse_rule(name, rule) for rule in entry.get("rules") or ())
        return NetworkRuleSet(name=name, rules=rules, description=str(entry.get("description", "")))

    if "bootstrap" in entry and "bootstrap_file" in entry:
        raise InvalidDeclaration("use either bootstrap or bootstrap_file, not both", name)
    text = entry.get("bootstrap") or ""
    if "bootstrap_file" in entry:
        bootstrap_path = base_path / str(entry["bootstrap_file"])
        try:
            text = bootstrap_path.read_text()
        except OSError as e:
            raise InvalidDeclaration(f"unable to read {bootstrap_path}: {e}", name) from e

    try:
        bootstrap = Template.parse(str(text))
    except InvalidPlaceholder as e:
        raise InvalidPlaceholder(name, e.placeholder) from None

    return ComputeInstance(
        name=name,
        image=str(entry.get("image") or ""),
        size=str(entry.get("size") or ""),
        network_rule_sets=tuple(str(rs) for rs in entry.get("network_rule_sets") or ()),
        bootstrap=bootstrap,
        tags=tuple((str(k), str(v)) for k, v in (entry.get("tags") or {}).items()),
    )


def _parse_rule(owner: str, entry: Any) -> NetworkRule:
    if not isinstance(entry, Mapping):
        raise InvalidDeclaration("rule must be a mapping", owner)
    from_port, to_port = _parse_ports(owner, entry.get("ports", "0-65535"))
    cidrs = entry.get("cidrs", ["0.0.0.0/0"])
    if isinstance(cidrs, str):
        cidrs = [cidrs]
    try:
        return NetworkRule(
            direction=str(entry.get("direction", "ingress")),
            protocol=str(entry.get("protocol", "tcp")),
            from_port=from_port,
            to_port=to_port,
            cidrs=tuple(str(c) for c in cidrs),
        )
    except InvalidDeclaration as e:
        raise InvalidDeclaration(e.message, owner) from e


def _parse_ports(owner: str, ports: Any) -> tuple[int, int]:
    try:
        if isinstance(ports, int):
            return ports, ports
        if isinstance(ports, str):
            first, _, last = ports.partition("-")
            return int(first), int(last or first)
        first, last = ports
        return int(first), int(last)
    except (TypeError, ValueError):
        raise InvalidDeclaration(f"invalid ports {ports!r}", owner) from None

"""
Resource descriptors.

This module defines the provisionable entities a catalog is made of:

- `NetworkRuleSet`: an ordered set of ingress/egress `NetworkRule` entries.
  Rule sets have no dependencies and are immutable once declared.
- `ComputeInstance`: a virtual machine with attached rule sets and a
  bootstrap `Template` whose placeholders refer to attributes of other
  resources.

Each descriptor kind exposes a fixed set of runtime attributes, which are
the only attributes placeholders and outputs may refer to.

Example:
    Declaring the database tier of a two-tier deployment::

        from graph_deploy import ComputeInstance, NetworkRule, NetworkRuleSet, Template

        sg_db = NetworkRuleSet(
            name="sg-db",
            rules=(NetworkRule("ingress", "tcp", 27017, 27017, ("10.0.0.0/16",)),),
        )
        db = ComputeInstance(
            name="db",
            image="ami-0abcdef1234567890",
            size="t2.micro",
            network_rule_sets=("sg-db",),
        )
        ms = ComputeInstance(
            name="ms",
            image="ami-0abcdef1234567890",
            size="t2.micro",
            bootstrap=Template.parse("DB=${db.private_address}"),
        )
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar

from graph_deploy._errors import InvalidDeclaration
from graph_deploy._template import Template

__all__ = [
    "ResourceKind",
    "ResourceDescriptor",
    "NetworkRule",
    "NetworkRuleSet",
    "ComputeInstance",
]

PROTOCOLS = ("tcp", "udp", "icmp", "all")
DIRECTIONS = ("ingress", "egress")


class ResourceKind(str, Enum):
    NETWORK_RULE_SET = "network-rule-set"
    COMPUTE_INSTANCE = "compute-instance"


@dataclass(frozen=True)
class ResourceDescriptor:
    """Base class for provisionable resources.

    Attributes:
        name: Unique name of the resource within its catalog.
        kind: The resource kind (class-level).
        exposes: Runtime attributes this kind publishes once realized
            (class-level).
    """

    kind: ClassVar[ResourceKind]
    exposes: ClassVar[tuple[str, ...]] = ()

    name: str


@dataclass(frozen=True)
class NetworkRule:
    """A single ingress or egress rule.

    Attributes:
        direction: ``ingress`` or ``egress``.
        protocol: ``tcp``, ``udp``, ``icmp`` or ``all``.
        from_port: First port of the range.
        to_port: Last port of the range (inclusive).
        cidrs: Allowed source (ingress) or destination (egress) ranges.
    """

    direction: str
    protocol: str
    from_port: int
    to_port: int
    cidrs: tuple[str, ...] = ("0.0.0.0/0",)

    def __post_init__(self) -> None:
        if self.direction not in DIRECTIONS:
            raise InvalidDeclaration(f"invalid rule direction {self.direction!r}")
        if self.protocol not in PROTOCOLS:
            raise InvalidDeclaration(f"invalid rule protocol {self.protocol!r}")
        if not 0 <= self.from_port <= self.to_port <= 65535:
            raise InvalidDeclaration(
                f"invalid port range {self.from_port}-{self.to_port}"
            )
        if not self.cidrs:
            raise InvalidDeclaration("a rule needs at least one address range")


@dataclass(frozen=True)
class NetworkRuleSet(ResourceDescriptor):
    """An ordered, immutable set of network rules (a security group)."""

    kind: ClassVar[ResourceKind] = ResourceKind.NETWORK_RULE_SET
    exposes: ClassVar[tuple[str, ...]] = ("id",)

    rules: tuple[NetworkRule, ...] = ()
    description: str = ""

    def ingress(self) -> tuple[NetworkRule, ...]:
        return tuple(rule for rule in self.rules if rule.direction == "ingress")

    def egress(self) -> tuple[NetworkRule, ...]:
        return tuple(rule for rule in self.rules if rule.direction == "egress")


@dataclass(frozen=True)
class ComputeInstance(ResourceDescriptor):
    """A compute instance with attached rule sets and a bootstrap template.

    Attributes:
        image: Image reference (e.g. an AMI id).
        size: Instance size (e.g. ``t2.micro``).
        network_rule_sets: Names of the attached `NetworkRuleSet` resources.
        bootstrap: The bootstrap template run on first boot.
        tags: Free-form tags passed to the provider.
    """

    kind: ClassVar[ResourceKind] = ResourceKind.COMPUTE_INSTANCE
    exposes: ClassVar[tuple[str, ...]] = ("instance_id", "private_address", "public_address")

    image: str = ""
    size: str = ""
    network_rule_sets: tuple[str, ...] = ()
    bootstrap: Template = field(default_factory=Template)
    tags: tuple[tuple[str, str], ...] = ()

    def __post_init__(self) -> None:
        if not self.image:
            raise InvalidDeclaration("compute instance needs an image", self.name)
        if not self.size:
            raise InvalidDeclaration("compute instance needs a size", self.name)

"""
graph-deploy: Dependency-ordered provisioning with typed attribute references.

This package provisions resources that reference each other's runtime
attributes. A compute instance's bootstrap script may need the private
address of another instance, which is only known once that instance
exists. graph-deploy derives the dependency graph from such references,
creates resources batch by batch in dependency order, and renders each
bootstrap script with fully resolved values just before its instance is
created.

Overview:
    The pipeline has five parts:

    - `Catalog`: validated resource descriptors (`NetworkRuleSet`,
      `ComputeInstance`) and declared `Output` entries
    - `build_graph`: the acyclic `DependencyGraph` of creation dependencies
    - `Scheduler`: drives creation through a `Provider`, batch by batch
    - `ResolvedAttributeSet` and `Template`: write-once runtime attributes
      and the placeholder templates rendered from them
    - `collect_outputs`: the final, read-only output mapping

    `deploy` runs all of them in order.

Quick Start:
    Deploying a two-tier catalog with the in-memory provider::

        from graph_deploy import InMemoryProvider, deploy, load_catalog

        catalog = load_catalog("examples/two_tier.yaml")
        result = deploy(catalog, InMemoryProvider())
        print(result.outputs["db_private_ip"])  # 10.0.0.1

Placeholders:
    Bootstrap templates refer to attributes of other resources with
    ``${resource.attribute}``::

        export MONGO_URL=mongodb://${db.private_address}:27017/app

    Network rule sets expose ``id``; compute instances expose
    ``instance_id``, ``private_address`` and ``public_address``.

Errors:
    Configuration errors (`UnknownReference`, `InvalidPlaceholder`,
    `CyclicDependency`, `InvalidDeclaration`) are raised before any
    provider call. Provider errors are recorded per resource; transient
    ones are retried with exponential backoff. See `graph_deploy._errors`.

Exports:
    Resources:
        - `ResourceKind`, `ResourceDescriptor`
        - `NetworkRule`, `NetworkRuleSet`, `ComputeInstance`

    Catalog and graph:
        - `Catalog`, `Output`, `load_catalog`
        - `RefInfo`, `DependencyGraph`, `get_refs`, `get_dependencies`,
          `build_graph`

    Templates and attributes:
        - `Attr`, `Literal`, `Placeholder`, `Template`
        - `ResolvedAttributeSet`

    Provisioning:
        - `Provider`, `InstanceInfo`, `InMemoryProvider`, `Ec2Provider`
        - `Settings`, `FailurePolicy`
        - `Scheduler`, `ResourceState`, `RunResult`
        - `collect_outputs`, `plan`, `deploy`, `DeploymentResult`
"""

from graph_deploy._attributes import ResolvedAttributeSet
from graph_deploy._catalog import Catalog, Output, load_catalog
from graph_deploy._config import FailurePolicy, Settings
from graph_deploy._deploy import DeploymentResult, deploy, plan
from graph_deploy._ec2 import Ec2Provider
from graph_deploy._errors import (
    AttributeOverwrite,
    ConfigurationError,
    CyclicDependency,
    DeploymentError,
    IncompleteConvergence,
    InvalidDeclaration,
    InvalidPlaceholder,
    ProviderError,
    ProviderFatalError,
    ProviderTransientError,
    UnknownReference,
    UnresolvedPlaceholder,
)
from graph_deploy._graph import (
    DependencyGraph,
    RefInfo,
    build_graph,
    get_dependencies,
    get_refs,
)
from graph_deploy._provider import InMemoryProvider, InstanceInfo, Provider
from graph_deploy._report import collect_outputs
from graph_deploy._scheduler import ResourceState, RunResult, Scheduler
from graph_deploy._template import Attr, Literal, Placeholder, Template
from graph_deploy._types import (
    ComputeInstance,
    NetworkRule,
    NetworkRuleSet,
    ResourceDescriptor,
    ResourceKind,
)

__all__ = [
    # Resources
    "ResourceKind",
    "ResourceDescriptor",
    "NetworkRule",
    "NetworkRuleSet",
    "ComputeInstance",
    # Catalog and graph
    "Catalog",
    "Output",
    "load_catalog",
    "RefInfo",
    "DependencyGraph",
    "get_refs",
    "get_dependencies",
    "build_graph",
    # Templates and attributes
    "Attr",
    "Literal",
    "Placeholder",
    "Template",
    "ResolvedAttributeSet",
    # Provisioning
    "Provider",
    "InstanceInfo",
    "InMemoryProvider",
    "Ec2Provider",
    "Settings",
    "FailurePolicy",
    "Scheduler",
    "ResourceState",
    "RunResult",
    "collect_outputs",
    "plan",
    "deploy",
    "DeploymentResult",
    # Errors
    "DeploymentError",
    "ConfigurationError",
    "InvalidDeclaration",
    "UnknownReference",
    "InvalidPlaceholder",
    "CyclicDependency",
    "ProviderError",
    "ProviderTransientError",
    "ProviderFatalError",
    "UnresolvedPlaceholder",
    "AttributeOverwrite",
    "IncompleteConvergence",
]

__version__ = "0.1.0"

"""
The end-to-end deployment pipeline.

`deploy` chains the components together: the catalog is turned into a
dependency graph (failing fast on cycles, before any provider call), the
scheduler realizes the resources, and the declared outputs are collected
once the run is over. `plan` stops after the graph and returns the batch
plan without touching the provider.
"""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from graph_deploy._catalog import Catalog
from graph_deploy._config import Settings
from graph_deploy._errors import DeploymentError
from graph_deploy._graph import build_graph
from graph_deploy._provider import Provider
from graph_deploy._report import collect_outputs
from graph_deploy._scheduler import RunResult, Scheduler

__all__ = [
    "DeploymentResult",
    "plan",
    "deploy",
]

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeploymentResult:
    """Outputs and run details of a deployment."""

    run: RunResult
    outputs: Mapping[str, str]

    @property
    def converged(self) -> bool:
        return self.run.converged

    def errors(self) -> list[DeploymentError]:
        """Provider failures, in declaration order."""
        return list(self.run.failures.values())

    def summary(self) -> dict[str, Any]:
        """A JSON-serializable summary of the deployment."""
        return {
            "outputs": dict(self.outputs),
            "resources": {name: state.value for name, state in self.run.states.items()},
        }


def plan(catalog: Catalog) -> tuple[tuple[str, ...], ...]:
    """Return the batch plan for a catalog.

    Raises:
        CyclicDependency: If the catalog's references form a cycle.
    """
    return build_graph(catalog).batches()


def deploy(
    catalog: Catalog,
    provider: Provider,
    settings: Settings | None = None,
    scheduler_factory: Callable[..., Scheduler] = Scheduler,
) -> DeploymentResult:
    """Provision every resource of a catalog and collect its outputs.

    Args:
        catalog: The validated catalog.
        provider: The provider that creates resources.
        settings: Retry, concurrency and failure policy settings.
        scheduler_factory: Callable building the scheduler from
            ``(graph, provider, settings)``.

    Returns:
        The `DeploymentResult`. Provider failures of resources that no
        output depends on are reported in ``result.run.failures``.

    Raises:
        CyclicDependency: Before any provider call, if the catalog is cyclic.
        IncompleteConvergence: If a declared output cannot be resolved.
    """
    graph = build_graph(catalog)
    scheduler = scheduler_factory(graph, provider, settings)
    run = scheduler.run()
    if run.converged:
        LOG.info("All %d resources realized", len(run.states))
    else:
        LOG.warning(
            "Deployment did not converge: failed=%s skipped=%s",
            list(run.failures),
            list(run.skipped),
        )
    return DeploymentResult(run=run, outputs=collect_outputs(catalog.outputs, run))

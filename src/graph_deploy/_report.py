"""Convergence reporting."""

from collections.abc import Iterable, Mapping
from types import MappingProxyType

from graph_deploy._catalog import Output
from graph_deploy._errors import IncompleteConvergence
from graph_deploy._scheduler import ResourceState, RunResult

__all__ = ["collect_outputs"]


def collect_outputs(outputs: Iterable[Output], run: RunResult) -> Mapping[str, str]:
    """Resolve declared outputs against a finished run.

    Args:
        outputs: The declared outputs, in declaration order.
        run: The result of a scheduler run.

    Returns:
        A read-only mapping from output name to literal value.

    Raises:
        IncompleteConvergence: If an output references a resource that was
            not realized. When the resource failed, the provider error is
            chained as the cause.
    """
    values: dict[str, str] = {}
    for output in outputs:
        resource = output.ref.resource
        if run.states.get(resource) is not ResourceState.REALIZED:
            error = IncompleteConvergence(output.name, resource)
            raise error from run.failures.get(resource)
        values[output.name] = run.resolved[output.ref]
    return MappingProxyType(values)

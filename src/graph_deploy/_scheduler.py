"""
The topological scheduler.

The scheduler walks the ready batches of a `DependencyGraph` in order.
Batches run strictly one after another; the resources of one batch have no
mutual dependencies and are created concurrently on a thread pool. Each
resource moves through ``pending -> in-flight -> realized`` or
``pending -> in-flight -> failed``, and only enters ``in-flight`` once
every dependency is ``realized``. That is also the moment its bootstrap
template is rendered against the resolved attributes.

Failures are isolated: a failed resource's transitive dependents are never
scheduled. Unrelated branches keep going under
`FailurePolicy.CONTINUE_INDEPENDENT` and stop at the end of the current
batch under `FailurePolicy.HALT_ALL`.
"""

import logging
import threading
import time
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum

from graph_deploy._attributes import ResolvedAttributeSet
from graph_deploy._config import FailurePolicy, Settings
from graph_deploy._errors import ProviderError, ProviderFatalError, ProviderTransientError
from graph_deploy._graph import DependencyGraph
from graph_deploy._provider import Provider
from graph_deploy._template import Attr
from graph_deploy._types import ComputeInstance, NetworkRuleSet, ResourceDescriptor

__all__ = [
    "ResourceState",
    "RunResult",
    "Scheduler",
]

LOG = logging.getLogger(__name__)


class ResourceState(str, Enum):
    """Lifecycle state of a resource during a run."""

    PENDING = "pending"
    IN_FLIGHT = "in-flight"
    REALIZED = "realized"
    FAILED = "failed"


@dataclass
class RunResult:
    """The outcome of a scheduler run.

    Attributes:
        batches: The batch plan the run followed.
        states: Final state of every resource, in declaration order.
        resolved: Runtime attributes of realized resources.
        payloads: Rendered bootstrap payloads of instances that went
            in-flight.
        failures: Provider errors by resource name.
        aborted: True if `Scheduler.abort` was called during the run.
    """

    batches: tuple[tuple[str, ...], ...]
    states: dict[str, ResourceState]
    resolved: ResolvedAttributeSet
    payloads: dict[str, str] = field(default_factory=dict)
    failures: dict[str, ProviderError] = field(default_factory=dict)
    aborted: bool = False

    @property
    def converged(self) -> bool:
        """True if every resource was realized."""
        return all(state is ResourceState.REALIZED for state in self.states.values())

    @property
    def skipped(self) -> tuple[str, ...]:
        """Resources that were never scheduled."""
        return tuple(name for name, state in self.states.items() if state is ResourceState.PENDING)


class Scheduler:
    """Drives resource creation through a provider in dependency order.

    Args:
        graph: The dependency graph to realize.
        provider: The provider that creates resources.
        settings: Retry, concurrency and failure policy settings.
        sleep: Function used to wait between retries.

    Example:
        Realizing a catalog with the in-memory provider::

            graph = build_graph(catalog)
            result = Scheduler(graph, InMemoryProvider()).run()
            assert result.converged
            print(result.payloads["ms"])
    """

    def __init__(
        self,
        graph: DependencyGraph,
        provider: Provider,
        settings: Settings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.graph = graph
        self.provider = provider
        self.settings = settings or Settings()
        self.resolved = ResolvedAttributeSet()
        self.events: list[tuple[str, ResourceState]] = []
        self._sleep = sleep
        self._states = {name: ResourceState.PENDING for name in graph.names()}
        self._payloads: dict[str, str] = {}
        self._failures: dict[str, ProviderError] = {}
        self._lock = threading.Lock()
        self._abort = threading.Event()

    def batches(self) -> tuple[tuple[str, ...], ...]:
        return self.graph.batches()

    def state(self, name: str) -> ResourceState:
        return self._states[name]

    def abort(self) -> None:
        """Stop issuing new creations. Calls already issued run to completion."""
        LOG.info("Abort requested, no new resources will be scheduled")
        self._abort.set()

    def run(self) -> RunResult:
        """Realize every resource, batch by batch.

        Returns:
            A `RunResult`. Provider failures are recorded there rather
            than raised; any other exception from the provider is
            recorded as a `ProviderFatalError` chained to it.

        Raises:
            UnresolvedPlaceholder: If a template still has unresolved
                placeholders when its resource is about to go in-flight.
        """
        batches = self.batches()
        LOG.debug("Scheduling %d batches: %s", len(batches), batches)
        with ThreadPoolExecutor(
            max_workers=self.settings.max_workers, thread_name_prefix="graph-deploy"
        ) as executor:
            for index, batch in enumerate(batches):
                if self._abort.is_set():
                    break
                if self._failures and self.settings.policy is FailurePolicy.HALT_ALL:
                    LOG.warning("Halting after failure of %s", ", ".join(self._failures))
                    break
                futures = []
                for name in batch:
                    if self._abort.is_set():
                        break
                    blocked = [
                        dep
                        for dep in self.graph.dependencies(name)
                        if self._states[dep] is not ResourceState.REALIZED
                    ]
                    if blocked:
                        LOG.warning(
                            "Skipping %s, dependencies not realized: %s", name, ", ".join(blocked)
                        )
                        continue
                    payload = self._render(self.graph.catalog[name])
                    self._transition(name, ResourceState.IN_FLIGHT)
                    futures.append(executor.submit(self._realize, name, payload))
                LOG.debug("Batch %d: %d resources in flight", index, len(futures))
                for future in futures:
                    future.result()

        return RunResult(
            batches=batches,
            states=dict(self._states),
            resolved=self.resolved,
            payloads=dict(self._payloads),
            failures=dict(self._failures),
            aborted=self._abort.is_set(),
        )

    def _render(self, resource: ResourceDescriptor) -> str | None:
        if not isinstance(resource, ComputeInstance):
            return None
        payload = resource.bootstrap.render(self.resolved, resource=resource.name)
        self._payloads[resource.name] = payload
        return payload

    def _transition(self, name: str, state: ResourceState) -> None:
        with self._lock:
            self._states[name] = state
            self.events.append((name, state))
        LOG.info("%s: %s", name, state.value)

    def _realize(self, name: str, payload: str | None) -> None:
        resource = self.graph.catalog[name]
        try:
            attributes = self._create_with_retry(resource, payload)
        except ProviderError as e:
            if e.resource is None:
                e.resource = name
            self._fail(name, e)
            return
        except Exception as e:
            LOG.debug("%s: unexpected provider error", name, exc_info=True)
            error = ProviderFatalError(f"{type(e).__name__}: {e}", name)
            error.__cause__ = e
            self._fail(name, error)
            return

        with self._lock:
            self.resolved.publish(name, attributes)
            self._states[name] = ResourceState.REALIZED
            self.events.append((name, ResourceState.REALIZED))
        LOG.info("%s: realized %s", name, dict(attributes))

    def _fail(self, name: str, error: ProviderError) -> None:
        with self._lock:
            self._states[name] = ResourceState.FAILED
            self._failures[name] = error
            self.events.append((name, ResourceState.FAILED))
        LOG.error("%s: failed: %s", name, error.message)

    def _create_with_retry(
        self, resource: ResourceDescriptor, payload: str | None
    ) -> Mapping[str, str]:
        max_attempts = self.settings.max_attempts
        for attempt in range(1, max_attempts):
            try:
                return self._create(resource, payload)
            except ProviderTransientError as e:
                delay = self.settings.backoff(attempt)
                LOG.warning(
                    "%s: transient error (attempt %d/%d), retrying in %.1fs: %s",
                    resource.name,
                    attempt,
                    max_attempts,
                    delay,
                    e.message,
                )
                self._sleep(delay)
        try:
            return self._create(resource, payload)
        except ProviderTransientError as e:
            raise ProviderFatalError(
                f"giving up after {max_attempts} attempts: {e.message}", resource.name
            ) from e

    def _create(self, resource: ResourceDescriptor, payload: str | None) -> Mapping[str, str]:
        if isinstance(resource, NetworkRuleSet):
            rule_set_id = self.provider.create_network_rule_set(
                resource.name, resource.rules, resource.description
            )
            return {"id": rule_set_id}
        if isinstance(resource, ComputeInstance):
            rule_set_ids = [self.resolved[Attr(rs, "id")] for rs in resource.network_rule_sets]
            info = self.provider.create_compute_instance(
                resource.name,
                resource.image,
                resource.size,
                rule_set_ids,
                payload or "",
                dict(resource.tags),
            )
            return info.attributes()
        raise TypeError(f"unsupported resource type: {type(resource).__name__}")

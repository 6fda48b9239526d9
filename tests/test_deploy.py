"""Integration tests for the deployment pipeline and convergence reporting."""

from pathlib import Path
from types import MappingProxyType

import pytest
from conftest import ScriptedProvider, instance

from graph_deploy import (
    Attr,
    Catalog,
    CyclicDependency,
    IncompleteConvergence,
    InMemoryProvider,
    Output,
    ProviderFatalError,
    ProviderTransientError,
    ResourceState,
    Scheduler,
    Settings,
    UnknownReference,
    build_graph,
    collect_outputs,
    deploy,
    load_catalog,
    plan,
)

FAST = Settings(backoff_base=0, backoff_cap=0)
EXAMPLES = Path(__file__).parent.parent / "examples"


class TestCollectOutputs:
    """Tests for collect_outputs."""

    def test_outputs(self, two_tier: Catalog) -> None:
        """Outputs should map names to realized values."""
        run = Scheduler(build_graph(two_tier), InMemoryProvider(), FAST).run()
        outputs = collect_outputs(two_tier.outputs, run)
        assert outputs == {"db_private_ip": run.resolved[Attr("db", "private_address")]}

    def test_outputs_read_only(self, two_tier: Catalog) -> None:
        """The output mapping should be immutable."""
        run = Scheduler(build_graph(two_tier), InMemoryProvider(), FAST).run()
        outputs = collect_outputs(two_tier.outputs, run)
        assert isinstance(outputs, MappingProxyType)
        with pytest.raises(TypeError):
            outputs["db_private_ip"] = "x"  # type: ignore[index]

    def test_output_order(self) -> None:
        """Outputs keep declaration order."""
        catalog = Catalog(
            [instance("a"), instance("b")],
            [
                Output("second", Attr("b", "public_address")),
                Output("first", Attr("a", "instance_id")),
            ],
        )
        run = Scheduler(build_graph(catalog), InMemoryProvider(), FAST).run()
        assert list(collect_outputs(catalog.outputs, run)) == ["second", "first"]

    def test_incomplete_convergence(self, two_tier: Catalog) -> None:
        """An output on a failed resource should raise IncompleteConvergence."""
        provider = ScriptedProvider({"db": [ProviderFatalError("invalid image")]})
        run = Scheduler(build_graph(two_tier), provider, FAST).run()

        with pytest.raises(IncompleteConvergence) as excinfo:
            collect_outputs(two_tier.outputs, run)
        assert excinfo.value.output == "db_private_ip"
        assert excinfo.value.resource == "db"
        assert isinstance(excinfo.value.__cause__, ProviderFatalError)


class TestDeploy:
    """Tests for the deploy and plan entry points."""

    def test_two_tier(self, two_tier: Catalog) -> None:
        """The two-tier example converges and reports the database address."""
        provider = InMemoryProvider()
        result = deploy(two_tier, provider, FAST)

        assert result.converged
        assert result.run.batches == (("sg-db", "db"), ("ms",))
        assert provider.call("db").method == "create_compute_instance"
        address = result.run.resolved[Attr("db", "private_address")]
        assert address in provider.call("ms").arguments["bootstrap"]
        assert dict(result.outputs) == {"db_private_ip": address}
        assert result.errors() == []

    def test_unknown_reference_no_provider_calls(self) -> None:
        """A template naming a missing resource fails before any provider call."""
        provider = InMemoryProvider()
        with pytest.raises(UnknownReference):
            catalog = Catalog([instance("db"), instance("ms", "${dbx.private_address}")])
            deploy(catalog, provider, FAST)
        assert provider.calls == []

    def test_cycle_no_provider_calls(self) -> None:
        """A cyclic catalog fails before any provider call."""
        catalog = Catalog(
            [
                instance("free"),
                instance("a", "${b.private_address}"),
                instance("b", "${a.private_address}"),
            ]
        )
        provider = InMemoryProvider()
        with pytest.raises(CyclicDependency):
            deploy(catalog, provider, FAST)
        assert provider.calls == []

    def test_transient_errors_converge(self, two_tier: Catalog) -> None:
        """Transient errors within the retry limit still converge."""
        provider = ScriptedProvider(
            {"db": [ProviderTransientError("throttled"), ProviderTransientError("throttled")]}
        )
        result = deploy(two_tier, provider, Settings(max_attempts=3, backoff_base=0))
        assert result.converged
        assert provider.attempts["db"] == 3

    def test_failure_without_affected_outputs(self) -> None:
        """Failures of resources no output depends on are reported in the result."""
        catalog = Catalog(
            [instance("db"), instance("cache")],
            [Output("db_private_ip", Attr("db", "private_address"))],
        )
        provider = ScriptedProvider({"cache": [ProviderFatalError("quota exceeded")]})
        result = deploy(catalog, provider, FAST)

        assert not result.converged
        assert "db_private_ip" in result.outputs
        assert [error.resource for error in result.errors()] == ["cache"]
        assert result.summary()["resources"] == {"db": "realized", "cache": "failed"}

    def test_plan(self, two_tier: Catalog) -> None:
        """plan returns batches without a provider."""
        assert plan(two_tier) == (("sg-db", "db"), ("ms",))

    def test_scheduler_factory(self, two_tier: Catalog) -> None:
        """deploy builds its scheduler through the given factory."""
        built: list[Scheduler] = []

        def factory(*args):
            scheduler = Scheduler(*args)
            built.append(scheduler)
            return scheduler

        deploy(two_tier, InMemoryProvider(), FAST, scheduler_factory=factory)
        assert len(built) == 1
        assert built[0].state("ms") is ResourceState.REALIZED


class TestExample:
    """The shipped example declaration."""

    def test_example_deploys(self) -> None:
        """examples/two_tier.yaml converges with the in-memory provider."""
        catalog = load_catalog(EXAMPLES / "two_tier.yaml")
        result = deploy(catalog, InMemoryProvider(), FAST)

        assert result.run.batches == (("sg-db", "sg-ms"), ("db",), ("ms",))
        payload = result.run.payloads["ms"]
        assert f"mongodb://{result.outputs['db_private_ip']}:27017" in payload
        assert '"${HOME}/app"' in payload
        assert set(result.outputs) == {"db_private_ip", "ms_public_ip"}

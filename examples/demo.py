#!/usr/bin/env python3
"""Demo: Provisioning a Two-Tier Deployment

This example walks through the pipeline step by step with the in-memory
provider: load the catalog, inspect the dependency graph, run the
scheduler, and collect the outputs.

Run with: python examples/demo.py
"""

from pathlib import Path

from graph_deploy import (
    InMemoryProvider,
    Scheduler,
    Settings,
    build_graph,
    collect_outputs,
    get_dependencies,
    get_refs,
    load_catalog,
)

HERE = Path(__file__).parent


# =============================================================================
# PART 1: Load and validate the catalog
# =============================================================================
#
# Loading validates every rule set attachment, placeholder and output.
# Nothing is provisioned yet.

catalog = load_catalog(HERE / "two_tier.yaml")

print("=" * 70)
print("PART 1: Catalog")
print("=" * 70)
for resource in catalog:
    print(f"  {resource.name:8} {resource.kind.value}")
    for ref in get_refs(resource):
        print(f"           {ref.field}: {ref.target}.{ref.attr}")


# =============================================================================
# PART 2: Dependency graph and batches
# =============================================================================

graph = build_graph(catalog)

print()
print("=" * 70)
print("PART 2: Dependency graph")
print("=" * 70)
for name in graph.names():
    direct = sorted(get_dependencies(graph, name))
    everything = sorted(get_dependencies(graph, name, transitive=True))
    print(f"  {name:8} direct={direct} transitive={everything}")
for index, batch in enumerate(graph.batches()):
    print(f"  batch {index}: {', '.join(batch)}")


# =============================================================================
# PART 3: Provisioning
# =============================================================================
#
# The in-memory provider hands out addresses from 10.0.0.0/24, so the
# service's bootstrap ends up pointing at the database's address.

provider = InMemoryProvider()
scheduler = Scheduler(graph, provider, Settings(backoff_base=0))
run = scheduler.run()

print()
print("=" * 70)
print("PART 3: Provisioning")
print("=" * 70)
for name, state in scheduler.events:
    print(f"  {name:8} -> {state.value}")
print()
print("  Rendered bootstrap of 'ms':")
for line in run.payloads["ms"].splitlines():
    print(f"    | {line}")


# =============================================================================
# PART 4: Outputs
# =============================================================================

print()
print("=" * 70)
print("PART 4: Outputs")
print("=" * 70)
for key, value in collect_outputs(catalog.outputs, run).items():
    print(f"  {key} = {value}")

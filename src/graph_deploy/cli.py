"""Command line interface: ``graph-deploy validate|plan|apply FILE``."""

import json
import logging
import signal
import typing as t

import click

from graph_deploy._catalog import load_catalog
from graph_deploy._config import FailurePolicy, Settings
from graph_deploy._deploy import deploy, plan
from graph_deploy._ec2 import Ec2Provider
from graph_deploy._errors import DeploymentError
from graph_deploy._provider import InMemoryProvider, Provider
from graph_deploy._scheduler import Scheduler

LOG = logging.getLogger(__name__)

quiet_loggers = ("boto3", "botocore", "urllib3")


class DeploymentFailed(click.ClickException):
    """A ClickException that prints one JSON error object per line on stderr"""

    def __init__(self, errors: list[DeploymentError]) -> None:
        super().__init__("; ".join(error.message for error in errors))
        self.errors = errors

    def show(self, file: t.Optional[t.IO[t.Any]] = None) -> None:
        if file is None:
            file = click.get_text_stream("stderr")
        for error in self.errors:
            click.echo(json.dumps(error.to_dict()), file=file)


def setup_logging(log_level: int = logging.INFO) -> None:
    logging.basicConfig(level=log_level, format="%(asctime)s %(levelname)-7s %(name)s: %(message)s")
    logging.getLogger("graph_deploy").setLevel(log_level)
    for name in quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)


def _failed(error: DeploymentError) -> DeploymentFailed:
    errors = [error]
    if isinstance(error.__cause__, DeploymentError):
        errors.insert(0, error.__cause__)
    return DeploymentFailed(errors)


_file_argument = click.argument("file", type=click.Path(exists=True, dir_okay=False))


@click.group()
@click.version_option(package_name="graph-deploy")
@click.option("-d", "--debug", is_flag=True, help="Enable debug logging")
def cli(debug: bool) -> None:
    """Provision resources in dependency order."""
    setup_logging(logging.DEBUG if debug else logging.INFO)


@cli.command(name="validate", short_help="Validate a declaration file")
@_file_argument
def cmd_validate(file: str) -> None:
    try:
        catalog = load_catalog(file)
        plan(catalog)
    except DeploymentError as e:
        raise _failed(e) from e
    click.echo(f"{file}: {len(catalog)} resources, {len(catalog.outputs)} outputs, OK")


@cli.command(name="plan", short_help="Show the creation batches")
@_file_argument
def cmd_plan(file: str) -> None:
    try:
        batches = plan(load_catalog(file))
    except DeploymentError as e:
        raise _failed(e) from e
    for index, batch in enumerate(batches):
        click.echo(f"batch {index}: {', '.join(batch)}")


@cli.command(name="apply", short_help="Provision the declared resources")
@_file_argument
@click.option(
    "--provider",
    "provider_name",
    type=click.Choice(["memory", "ec2"]),
    default="memory",
    show_default=True,
    help="Provider that creates the resources",
)
@click.option("--region", help="AWS region (ec2 provider)")
@click.option("--vpc-id", help="VPC for security groups (ec2 provider)")
@click.option("--key-name", help="Key pair for instances (ec2 provider)")
@click.option(
    "--policy",
    type=click.Choice([policy.value for policy in FailurePolicy]),
    help="What to do with independent resources after a failure",
)
@click.option("--max-attempts", type=click.IntRange(min=1), help="Attempts per provider call")
@click.option("--max-workers", type=click.IntRange(min=1), help="Concurrent creations per batch")
def cmd_apply(
    file: str,
    provider_name: str,
    region: str | None,
    vpc_id: str | None,
    key_name: str | None,
    policy: str | None,
    max_attempts: int | None,
    max_workers: int | None,
) -> None:
    schedulers: list[Scheduler] = []

    def make_scheduler(*args: t.Any) -> Scheduler:
        scheduler = Scheduler(*args)
        schedulers.append(scheduler)
        return scheduler

    def on_interrupt(signum: int, frame: t.Any) -> None:
        for scheduler in schedulers:
            scheduler.abort()

    try:
        LOG.debug("Using %s provider", provider_name)
        provider: Provider
        if provider_name == "ec2":
            provider = Ec2Provider(region_name=region, vpc_id=vpc_id, key_name=key_name)
        else:
            provider = InMemoryProvider()
        settings = Settings.from_env(
            max_attempts=max_attempts, max_workers=max_workers, policy=policy
        )
        catalog = load_catalog(file)
        previous = signal.signal(signal.SIGINT, on_interrupt)
        try:
            result = deploy(catalog, provider, settings, scheduler_factory=make_scheduler)
        finally:
            signal.signal(signal.SIGINT, previous)
    except DeploymentError as e:
        raise _failed(e) from e

    click.echo(json.dumps(result.summary(), indent=2))
    if result.errors():
        raise DeploymentFailed(result.errors())
    if not result.converged:
        raise click.ClickException("deployment aborted before convergence")

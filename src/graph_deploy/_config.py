"""
Runtime settings.

Settings can be built directly or read from the environment with
`Settings.from_env`:

- ``GRAPH_DEPLOY_MAX_ATTEMPTS``: total attempts per provider call (default 5)
- ``GRAPH_DEPLOY_BACKOFF_BASE``: first retry delay in seconds (default 1.0)
- ``GRAPH_DEPLOY_BACKOFF_CAP``: maximum retry delay in seconds (default 30.0)
- ``GRAPH_DEPLOY_MAX_WORKERS``: concurrent creations per batch (default 8)
- ``GRAPH_DEPLOY_POLICY``: ``continue-independent`` or ``halt-all``
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from graph_deploy._errors import InvalidDeclaration

__all__ = [
    "FailurePolicy",
    "Settings",
]

ENV_PREFIX = "GRAPH_DEPLOY_"


class FailurePolicy(str, Enum):
    """What to do with unrelated branches once a resource fails."""

    CONTINUE_INDEPENDENT = "continue-independent"
    HALT_ALL = "halt-all"


@dataclass(frozen=True)
class Settings:
    """Retry, concurrency and failure policy settings.

    Attributes:
        max_attempts: Total attempts per provider call, including the first.
        backoff_base: Delay in seconds before the first retry.
        backoff_cap: Upper bound for any retry delay.
        max_workers: Concurrent creations within a batch.
        policy: What happens to unrelated branches after a failure.
    """

    max_attempts: int = 5
    backoff_base: float = 1.0
    backoff_cap: float = 30.0
    max_workers: int = 8
    policy: FailurePolicy = FailurePolicy.CONTINUE_INDEPENDENT

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise InvalidDeclaration("max_attempts must be at least 1")
        if self.max_workers < 1:
            raise InvalidDeclaration("max_workers must be at least 1")
        if self.backoff_base < 0 or self.backoff_cap < 0:
            raise InvalidDeclaration("backoff delays must not be negative")

    def backoff(self, attempt: int) -> float:
        """Delay before retrying after failed attempt number ``attempt`` (1-based)."""
        return min(self.backoff_cap, self.backoff_base * 2 ** (attempt - 1))

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides) -> "Settings":
        """Read settings from ``GRAPH_DEPLOY_*`` environment variables.

        Keyword arguments that are not None take precedence over the
        environment.

        Raises:
            InvalidDeclaration: If a variable holds an invalid value.
        """
        environ = os.environ if environ is None else environ
        values = {}
        for name, convert in (
            ("max_attempts", int),
            ("backoff_base", float),
            ("backoff_cap", float),
            ("max_workers", int),
            ("policy", FailurePolicy),
        ):
            raw = environ.get(ENV_PREFIX + name.upper(), "").strip()
            if not raw:
                continue
            try:
                values[name] = convert(raw)
            except ValueError:
                raise InvalidDeclaration(
                    f"invalid value for {ENV_PREFIX + name.upper()}: {raw!r}"
                ) from None
        values.update({key: value for key, value in overrides.items() if value is not None})
        if "policy" in values:
            values["policy"] = FailurePolicy(values["policy"])
        return cls(**values)

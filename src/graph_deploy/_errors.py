"""
Error taxonomy for graph-deploy.

Every error raised by the library derives from `DeploymentError`, which
carries the name of the resource involved (if any) and can render itself
as a structured dictionary for the command line failure surface.

The hierarchy:

- `ConfigurationError`: static problems found before any provider call.
  Never retried.

  - `InvalidDeclaration`
  - `UnknownReference`
  - `InvalidPlaceholder`
  - `CyclicDependency`

- `ProviderError`: failures reported by a provider.

  - `ProviderTransientError`: retried with bounded exponential backoff.
  - `ProviderFatalError`: not retried; halts dependents.

- `UnresolvedPlaceholder`, `AttributeOverwrite`: internal invariant
  violations. Always fatal.

- `IncompleteConvergence`: a declared output cannot be resolved.
"""

from typing import Any

__all__ = [
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


class DeploymentError(Exception):
    """Base class for all graph-deploy errors.

    Attributes:
        message: Human readable description.
        resource: Name of the resource the error is about, or None.
    """

    def __init__(self, message: str, resource: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.resource = resource

    @property
    def kind(self) -> str:
        """The error kind, i.e. the class name."""
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable description of the error."""
        return {"error": self.kind, "resource": self.resource, "message": self.message}


class ConfigurationError(DeploymentError):
    """A static configuration error, detected before provisioning."""


class InvalidDeclaration(ConfigurationError):
    """The declaration document or settings are malformed."""


class UnknownReference(ConfigurationError):
    """A declaration references a resource that does not exist."""

    def __init__(self, resource: str | None, reference: str, context: str = "") -> None:
        where = f" in {context}" if context else ""
        owner = f"{resource!r} " if resource else ""
        super().__init__(
            f"{owner}references unknown resource {reference!r}{where}".strip(), resource
        )
        self.reference = reference


class InvalidPlaceholder(ConfigurationError):
    """A placeholder is malformed or names an attribute the target does not expose.

    Attributes:
        placeholder: The placeholder text, without ``${`` and ``}``.
        allowed: The attributes the target exposes, empty if the
            placeholder is malformed.
    """

    def __init__(
        self, resource: str | None, placeholder: str, allowed: tuple[str, ...] = ()
    ) -> None:
        owner = f"{resource!r}: " if resource else ""
        if allowed:
            expected = f"expected one of: {', '.join(allowed)}"
        else:
            expected = "expected 'resource.attribute'"
        super().__init__(f"{owner}invalid placeholder {placeholder!r}, {expected}", resource)
        self.placeholder = placeholder
        self.allowed = allowed


class CyclicDependency(ConfigurationError):
    """The dependency graph contains a cycle.

    Attributes:
        cycle: The cycle path, starting and ending with the same resource.
    """

    def __init__(self, cycle: list[str]) -> None:
        super().__init__(f"dependency cycle: {' -> '.join(cycle)}", cycle[0])
        self.cycle = cycle

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["cycle"] = self.cycle
        return result


class ProviderError(DeploymentError):
    """A provider call failed.

    Attributes:
        code: Provider-specific error code, if the provider reports one.
    """

    def __init__(self, message: str, resource: str | None = None, code: str | None = None) -> None:
        super().__init__(message, resource)
        self.code = code


class ProviderTransientError(ProviderError):
    """A provider call failed in a way that may succeed on retry."""


class ProviderFatalError(ProviderError):
    """A provider call failed permanently."""


class UnresolvedPlaceholder(DeploymentError):
    """A template was rendered before all its placeholders were resolved."""


class AttributeOverwrite(DeploymentError):
    """Runtime attributes were published twice for the same resource."""


class IncompleteConvergence(DeploymentError):
    """A declared output references a resource that was never realized.

    Attributes:
        output: Name of the output that could not be resolved.
    """

    def __init__(self, output: str, resource: str) -> None:
        super().__init__(
            f"output {output!r} references {resource!r}, which was not realized", resource
        )
        self.output = output

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["output"] = self.output
        return result

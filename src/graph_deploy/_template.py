"""
Attribute references and bootstrap templates.

A bootstrap template is parsed once, at declaration time, into a sequence
of segments. Each segment is either a `Literal` run of text or a
`Placeholder` naming an attribute of another resource through an `Attr`
reference. Rendering substitutes each placeholder with the literal value
found in a resolved attribute mapping.

Placeholder syntax:

- ``${db.private_address}`` refers to attribute ``private_address`` of
  resource ``db``.
- ``$${`` produces a literal ``${``.
- Shell expansions without a dot, such as ``${HOME}``, are kept as text.
- Any other dotted name, such as ``${db.private-address}``, raises
  `InvalidPlaceholder`.

Example:
    Parsing and rendering a template::

        from graph_deploy import Attr, Template

        template = Template.parse("MONGO_HOST=${db.private_address}\\n")
        assert template.references() == (Attr("db", "private_address"),)

        rendered = template.render({Attr("db", "private_address"): "10.0.0.5"})
        assert rendered == "MONGO_HOST=10.0.0.5\\n"
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass

from graph_deploy._errors import InvalidPlaceholder, UnresolvedPlaceholder

__all__ = [
    "Attr",
    "Literal",
    "Placeholder",
    "Segment",
    "Template",
    "RESOURCE_NAME",
]

RESOURCE_NAME = re.compile(r"[A-Za-z0-9_][\w-]*")

_TOKEN = re.compile(
    r"(?P<escape>\$\$\{)"
    r"|\$\{(?P<resource>[A-Za-z0-9_][\w-]*)\.(?P<attr>[A-Za-z_]\w*)\}"
    r"|\$\{(?P<malformed>[\w.-]*\.[\w.-]*)\}"
)


@dataclass(frozen=True)
class Attr:
    """A reference to a runtime attribute of a resource.

    Attributes:
        resource: Name of the referenced resource.
        name: Name of the attribute, e.g. ``private_address``.

    Example:
        Parsing the dotted form used in outputs::

            ref = Attr.parse("db.private_address")
            assert ref == Attr("db", "private_address")
            assert str(ref) == "db.private_address"
    """

    resource: str
    name: str

    @classmethod
    def parse(cls, text: str) -> "Attr":
        """Parse ``resource.attribute`` into an `Attr`.

        Raises:
            ValueError: If the text is not of the form ``resource.attribute``.
        """
        resource, sep, name = text.strip().rpartition(".")
        if not sep or not resource or not name:
            raise ValueError(f"expected 'resource.attribute', got {text!r}")
        return cls(resource, name)

    def __str__(self) -> str:
        return f"{self.resource}.{self.name}"


@dataclass(frozen=True)
class Literal:
    """A run of literal template text."""

    text: str


@dataclass(frozen=True)
class Placeholder:
    """A template slot filled with the value of an attribute reference."""

    ref: Attr


Segment = Literal | Placeholder


@dataclass(frozen=True)
class Template:
    """A parsed bootstrap template.

    Templates are immutable. Rendering never mutates the template, so a
    template can be rendered any number of times and always yields the
    same text for the same resolved values. Substituted values are not
    rescanned, which rules out double substitution.

    Attributes:
        segments: The literal and placeholder segments, in order.
    """

    segments: tuple[Segment, ...] = ()

    @classmethod
    def parse(cls, text: str) -> "Template":
        """Parse template text into segments.

        Args:
            text: Template text using ``${resource.attribute}`` placeholders.

        Returns:
            The parsed `Template`. Adjacent literal runs are merged.

        Raises:
            InvalidPlaceholder: If a dotted ``${...}`` does not have the
                ``resource.attribute`` form.
        """
        segments: list[Segment] = []
        buffer: list[str] = []
        position = 0
        for match in _TOKEN.finditer(text):
            if match.group("malformed") is not None:
                raise InvalidPlaceholder(None, match.group("malformed"))
            buffer.append(text[position : match.start()])
            position = match.end()
            if match.group("escape"):
                buffer.append("${")
                continue
            literal = "".join(buffer)
            buffer = []
            if literal:
                segments.append(Literal(literal))
            segments.append(Placeholder(Attr(match.group("resource"), match.group("attr"))))
        buffer.append(text[position:])
        literal = "".join(buffer)
        if literal:
            segments.append(Literal(literal))
        return cls(tuple(segments))

    def __str__(self) -> str:
        """Return the declaration text, escaping literal ``${``."""
        parts = []
        for segment in self.segments:
            if isinstance(segment, Placeholder):
                parts.append(f"${{{segment.ref}}}")
            else:
                parts.append(segment.text.replace("${", "$${"))
        return "".join(parts)

    def references(self) -> tuple[Attr, ...]:
        """Return the distinct attribute references, in first-use order."""
        seen: dict[Attr, None] = {}
        for segment in self.segments:
            if isinstance(segment, Placeholder):
                seen.setdefault(segment.ref, None)
        return tuple(seen)

    def unresolved(self, resolved: Mapping[Attr, str]) -> tuple[Attr, ...]:
        """Return the references that have no value in ``resolved``."""
        return tuple(ref for ref in self.references() if ref not in resolved)

    def render(self, resolved: Mapping[Attr, str], resource: str | None = None) -> str:
        """Substitute every placeholder with its resolved value.

        Args:
            resolved: Mapping from attribute reference to literal value.
            resource: Name of the resource owning the template, used in
                error messages.

        Returns:
            The rendered text.

        Raises:
            UnresolvedPlaceholder: If any placeholder has no resolved value.
        """
        missing = self.unresolved(resolved)
        if missing:
            names = ", ".join(str(ref) for ref in missing)
            raise UnresolvedPlaceholder(f"unresolved placeholders: {names}", resource)
        parts = []
        for segment in self.segments:
            if isinstance(segment, Placeholder):
                parts.append(str(resolved[segment.ref]))
            else:
                parts.append(segment.text)
        return "".join(parts)

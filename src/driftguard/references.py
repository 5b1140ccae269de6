"""Reference shapes recognised inside resource properties.

A reference shape knows how to find the identifiers a value points at and how
to rebuild that value with identifiers substituted. The rewriter only talks to
a ReferenceRegistry, so supporting another template dialect means registering
another shape.
"""

import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from typing import Any

SubstitutionTable = Mapping[str, str]
Walk = Callable[[Any], Any]
Collect = Callable[[Any], list[str]]

PLACEHOLDER = re.compile(r"\$\{([^}]*)\}")


def is_pseudo_parameter(identifier: str) -> bool:
    """Pseudo parameters such as ``AWS::Region`` never name a resource."""
    return "::" in identifier


def resolve_target(token: str, table: SubstitutionTable) -> str:
    """Substitute the identifier part of ``id`` or ``id.Attribute``."""
    if token in table:
        return table[token]
    head, dot, tail = token.partition(".")
    if dot and head in table:
        return f"{table[head]}.{tail}"
    # Identifiers may themselves contain dots; prefer the longest match.
    for new_id in sorted(table, key=len, reverse=True):
        if token.startswith(new_id + "."):
            return table[new_id] + token[len(new_id) :]
    return token


def target_id(token: str) -> str:
    return token.partition(".")[0]


def interpolate(text: str, table: SubstitutionTable, bound: Iterable[str] = ()) -> str:
    """Rewrite ``${id}`` placeholders in ``text``.

    ``${!Literal}`` escapes and names in ``bound`` are left untouched.
    """
    bound = set(bound)

    def _replace(match: re.Match) -> str:
        token = match.group(1)
        if token.startswith("!") or target_id(token) in bound:
            return match.group(0)
        return "${" + resolve_target(token, table) + "}"

    return PLACEHOLDER.sub(_replace, text)


def placeholders(text: str, bound: Iterable[str] = ()) -> list[str]:
    bound = set(bound)
    found = []
    for match in PLACEHOLDER.finditer(text):
        token = match.group(1)
        if token.startswith("!"):
            continue
        identifier = target_id(token)
        if identifier and identifier not in bound and not is_pseudo_parameter(identifier):
            found.append(identifier)
    return found


def _single_key(value: Any, keys: Iterable[str]) -> str | None:
    if isinstance(value, dict) and len(value) == 1:
        key = next(iter(value))
        if key in keys:
            return key
    return None


class ReferenceShape(ABC):
    """One way a template value can point at another resource."""

    name: str = ""

    @abstractmethod
    def matches(self, value: Any) -> bool: ...

    @abstractmethod
    def referenced_ids(self, value: Any, collect: Collect) -> list[str]: ...

    @abstractmethod
    def substitute(self, value: Any, table: SubstitutionTable, walk: Walk) -> Any: ...


class RefMarker(ReferenceShape):
    """``{"Ref": "Id"}`` or ``{"ref": "Id"}``."""

    name = "ref"
    keys = ("Ref", "ref")

    def matches(self, value: Any) -> bool:
        key = _single_key(value, self.keys)
        return key is not None and isinstance(value[key], str)

    def referenced_ids(self, value: Any, collect: Collect) -> list[str]:
        (target,) = value.values()
        return [] if is_pseudo_parameter(target) else [target]

    def substitute(self, value: Any, table: SubstitutionTable, walk: Walk) -> Any:
        ((key, target),) = value.items()
        return {key: table.get(target, target)}


class GetAttMarker(ReferenceShape):
    """``{"Fn::GetAtt": ["Id", "Attr"]}`` or ``{"Fn::GetAtt": "Id.Attr"}``."""

    name = "get-att"
    keys = ("Fn::GetAtt",)

    def matches(self, value: Any) -> bool:
        key = _single_key(value, self.keys)
        if key is None:
            return False
        args = value[key]
        if isinstance(args, str):
            return True
        return isinstance(args, list) and bool(args) and isinstance(args[0], str)

    def referenced_ids(self, value: Any, collect: Collect) -> list[str]:
        args = value["Fn::GetAtt"]
        if isinstance(args, str):
            return [target_id(args)]
        refs = [args[0]]
        for arg in args[1:]:
            refs.extend(collect(arg))
        return refs

    def substitute(self, value: Any, table: SubstitutionTable, walk: Walk) -> Any:
        args = value["Fn::GetAtt"]
        if isinstance(args, str):
            return {"Fn::GetAtt": resolve_target(args, table)}
        return {"Fn::GetAtt": [table.get(args[0], args[0]), *(walk(arg) for arg in args[1:])]}


class SubMarker(ReferenceShape):
    """``{"Fn::Sub": "..."}`` or ``{"Fn::Sub": ["...", {"Name": value}]}``.

    In the list form, names bound by the variable map are local to the
    template and are not resource references.
    """

    name = "sub"
    keys = ("Fn::Sub",)

    def matches(self, value: Any) -> bool:
        key = _single_key(value, self.keys)
        if key is None:
            return False
        args = value[key]
        if isinstance(args, str):
            return True
        return (
            isinstance(args, list)
            and len(args) == 2
            and isinstance(args[0], str)
            and isinstance(args[1], dict)
        )

    def referenced_ids(self, value: Any, collect: Collect) -> list[str]:
        args = value["Fn::Sub"]
        if isinstance(args, str):
            return placeholders(args)
        template, variables = args
        refs = placeholders(template, bound=variables)
        for variable in variables.values():
            refs.extend(collect(variable))
        return refs

    def substitute(self, value: Any, table: SubstitutionTable, walk: Walk) -> Any:
        args = value["Fn::Sub"]
        if isinstance(args, str):
            return {"Fn::Sub": interpolate(args, table)}
        template, variables = args
        return {
            "Fn::Sub": [
                interpolate(template, table, bound=variables),
                {name: walk(variable) for name, variable in variables.items()},
            ]
        }


class InterpolatedString(ReferenceShape):
    """``${Id}`` or ``${Id.Attr}`` embedded in any string value."""

    name = "interpolation"

    def matches(self, value: Any) -> bool:
        return isinstance(value, str) and "${" in value

    def referenced_ids(self, value: Any, collect: Collect) -> list[str]:
        return placeholders(value)

    def substitute(self, value: Any, table: SubstitutionTable, walk: Walk) -> Any:
        return interpolate(value, table)


def default_shapes() -> list[ReferenceShape]:
    return [RefMarker(), GetAttMarker(), SubMarker(), InterpolatedString()]


class ReferenceRegistry:
    """Ordered collection of reference shapes; the first match wins."""

    def __init__(self, shapes: Iterable[ReferenceShape] | None = None):
        self._shapes = list(shapes) if shapes is not None else default_shapes()

    @property
    def shapes(self) -> list[ReferenceShape]:
        return list(self._shapes)

    def register(self, shape: ReferenceShape, *, first: bool = False) -> None:
        """Add a shape. ``first=True`` gives it priority over existing shapes."""
        if first:
            self._shapes.insert(0, shape)
        else:
            self._shapes.append(shape)

    def _match(self, value: Any) -> ReferenceShape | None:
        for shape in self._shapes:
            if shape.matches(value):
                return shape
        return None

    def walk(self, value: Any, table: SubstitutionTable) -> Any:
        """Return a rebuilt copy of ``value`` with references substituted."""

        def _walk(node: Any) -> Any:
            shape = self._match(node)
            if shape is not None:
                return shape.substitute(node, table, _walk)
            if isinstance(node, dict):
                return {key: _walk(child) for key, child in node.items()}
            if isinstance(node, list):
                return [_walk(child) for child in node]
            return node

        return _walk(value)

    def collect(self, value: Any) -> list[str]:
        """Every identifier referenced anywhere in ``value``, in walk order."""

        def _collect(node: Any) -> list[str]:
            shape = self._match(node)
            if shape is not None:
                return shape.referenced_ids(node, _collect)
            refs: list[str] = []
            if isinstance(node, dict):
                for child in node.values():
                    refs.extend(_collect(child))
            elif isinstance(node, list):
                for child in node:
                    refs.extend(_collect(child))
            return refs

        return _collect(value)

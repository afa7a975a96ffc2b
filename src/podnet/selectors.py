"""Evaluate the subset of CEL device selectors used to pick networks.

Claims select network devices with expressions such as::

    device.driver == "dra.example.com" &&
        device.attributes["networking.k8s.io"].podNetwork == "blue-network"

The allocation subsystem evaluates the full language. This module only
understands equality and inequality against literals, ``&&``, ``||``, ``!``
and parentheses, which is enough for the conformance checker to confirm
that a bound device really satisfies the selectors of its claim.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, FrozenSet, List, Mapping, Optional, Tuple

from .exceptions import SelectorError
from .model import Device

_TOKEN = re.compile(
    r"""
    \s*(?:
        (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
      | (?P<number>-?\d+)
      | (?P<op>==|!=|&&|\|\||!|\(|\)|\[|\]|\.)
      | (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
    )""",
    re.VERBOSE,
)

_MISSING = object()


def _tokenize(expression: str) -> List[Tuple[str, str]]:
    tokens: List[Tuple[str, str]] = []
    pos = 0
    expression = expression.rstrip()
    while pos < len(expression):
        match = _TOKEN.match(expression, pos)
        if match is None or match.end() == pos:
            raise SelectorError(f"unexpected input at offset {pos}: {expression[pos:pos + 10]!r}")
        kind = match.lastgroup or ""
        tokens.append((kind, match.group(kind)))
        pos = match.end()
    return tokens


def _unquote(literal: str) -> str:
    body = literal[1:-1]
    return re.sub(r"\\(.)", r"\1", body)


@dataclass(frozen=True)
class DeviceContext:
    """What a selector can see of a device."""

    driver: str
    device: Device

    def attribute(self, domain: str, name: str) -> Any:
        attributes = self.device.attributes
        if f"{domain}/{name}" in attributes:
            return _typed(attributes[f"{domain}/{name}"])
        # Unqualified attributes belong to the driver's own domain.
        if domain == self.driver and name in attributes:
            return _typed(attributes[name])
        return _MISSING


def _typed(value: Any) -> Any:
    if isinstance(value, Mapping):
        for key in ("string", "bool", "int", "version"):
            if key in value:
                return value[key]
        return _MISSING
    return value


# ----------------------------------------------------------------------
# AST
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class _Literal:
    value: Any

    def evaluate(self, ctx: DeviceContext) -> Any:
        return self.value


@dataclass(frozen=True)
class _Driver:
    def evaluate(self, ctx: DeviceContext) -> Any:
        return ctx.driver


@dataclass(frozen=True)
class _Attribute:
    domain: str
    name: str

    def evaluate(self, ctx: DeviceContext) -> Any:
        return ctx.attribute(self.domain, self.name)


@dataclass(frozen=True)
class _Compare:
    op: str
    left: Any
    right: Any

    def evaluate(self, ctx: DeviceContext) -> Any:
        left = self.left.evaluate(ctx)
        right = self.right.evaluate(ctx)
        if left is _MISSING or right is _MISSING:
            return False
        return (left == right) if self.op == "==" else (left != right)


@dataclass(frozen=True)
class _Not:
    operand: Any

    def evaluate(self, ctx: DeviceContext) -> Any:
        return not _truth(self.operand.evaluate(ctx))


@dataclass(frozen=True)
class _Logical:
    op: str
    left: Any
    right: Any

    def evaluate(self, ctx: DeviceContext) -> Any:
        if self.op == "&&":
            return _truth(self.left.evaluate(ctx)) and _truth(self.right.evaluate(ctx))
        return _truth(self.left.evaluate(ctx)) or _truth(self.right.evaluate(ctx))


def _truth(value: Any) -> bool:
    if value is _MISSING:
        return False
    if not isinstance(value, bool):
        raise SelectorError(f"expected a boolean, got {value!r}")
    return value


class _Parser:
    def __init__(self, expression: str) -> None:
        self._tokens = _tokenize(expression)
        self._pos = 0
        self.attributes: List[Tuple[str, str]] = []

    def parse(self):
        node = self._or()
        if self._pos != len(self._tokens):
            raise SelectorError(f"unexpected token {self._tokens[self._pos][1]!r}")
        return node

    def _peek(self) -> Optional[Tuple[str, str]]:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else None

    def _take(self, value: Optional[str] = None, kind: Optional[str] = None) -> Tuple[str, str]:
        token = self._peek()
        if token is None:
            raise SelectorError("unexpected end of expression")
        if (value is not None and token[1] != value) or (kind is not None and token[0] != kind):
            raise SelectorError(f"expected {value or kind}, got {token[1]!r}")
        self._pos += 1
        return token

    def _accept(self, value: str) -> bool:
        token = self._peek()
        if token is not None and token[0] == "op" and token[1] == value:
            self._pos += 1
            return True
        return False

    def _or(self):
        node = self._and()
        while self._accept("||"):
            node = _Logical("||", node, self._and())
        return node

    def _and(self):
        node = self._unary()
        while self._accept("&&"):
            node = _Logical("&&", node, self._unary())
        return node

    def _unary(self):
        if self._accept("!"):
            return _Not(self._unary())
        return self._compare()

    def _compare(self):
        left = self._operand()
        token = self._peek()
        if token is not None and token[1] in ("==", "!="):
            self._pos += 1
            return _Compare(token[1], left, self._operand())
        return left

    def _operand(self):
        kind, value = self._take()
        if kind == "string":
            return _Literal(_unquote(value))
        if kind == "number":
            return _Literal(int(value))
        if kind == "op" and value == "(":
            node = self._or()
            self._take(")")
            return node
        if kind == "ident":
            if value in ("true", "false"):
                return _Literal(value == "true")
            if value == "device":
                return self._device_path()
        raise SelectorError(f"unsupported operand {value!r}")

    def _device_path(self):
        self._take(".")
        _, field_name = self._take(kind="ident")
        if field_name == "driver":
            return _Driver()
        if field_name != "attributes":
            raise SelectorError(f"unsupported device field {field_name!r}")
        self._take("[")
        _, domain = self._take(kind="string")
        self._take("]")
        self._take(".")
        _, name = self._take(kind="ident")
        domain = _unquote(domain)
        self.attributes.append((domain, name))
        return _Attribute(domain, name)


@dataclass(frozen=True)
class Selector:
    """A compiled selector expression."""

    expression: str
    root: Any
    attributes: FrozenSet[Tuple[str, str]]

    def matches(self, driver: str, device: Device) -> bool:
        return _truth(self.root.evaluate(DeviceContext(driver=driver, device=device)))

    def references(self, name: str) -> bool:
        """Whether the expression reads an attribute called ``name``."""

        return any(attr == name for _, attr in self.attributes)


def compile_selector(expression: str) -> Selector:
    parser = _Parser(expression)
    root = parser.parse()
    return Selector(expression=expression, root=root, attributes=frozenset(parser.attributes))

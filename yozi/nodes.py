"""Syntax tree nodes and the type representation attached to them."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto

from .token import Token


class TypeKind(Enum):
    UNIT = auto()
    BOOL = auto()

    I8 = auto()
    I16 = auto()
    I32 = auto()
    I64 = auto()
    U8 = auto()
    U16 = auto()
    U32 = auto()
    U64 = auto()

    FN = auto()
    RAWPTR = auto()


_KIND_NAMES = {
    TypeKind.UNIT: "()",
    TypeKind.BOOL: "bool",
    TypeKind.I8: "i8",
    TypeKind.I16: "i16",
    TypeKind.I32: "i32",
    TypeKind.I64: "i64",
    TypeKind.U8: "u8",
    TypeKind.U16: "u16",
    TypeKind.U32: "u32",
    TypeKind.U64: "u64",
    TypeKind.RAWPTR: "rawptr",
}

_UNSIGNED = frozenset({TypeKind.U8, TypeKind.U16, TypeKind.U32, TypeKind.U64})


@dataclass(frozen=True, eq=False)
class Type:
    """A value type; ``ref`` counts pointer levels, ``spec`` is the signature of functions."""

    kind: TypeKind = TypeKind.UNIT
    spec: Fn | None = field(default=None, repr=False)
    ref: int = 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Type):
            return NotImplemented
        if self.kind != other.kind or self.ref != other.ref:
            return False
        if self.kind is not TypeKind.FN:
            return True

        a, b = self.spec, other.spec
        if a is b:
            return True
        if len(a.args) != len(b.args):
            return False
        if any(x.type != y.type for x, y in zip(a.args, b.args)):
            return False
        return a.return_type() == b.return_type()

    def __hash__(self) -> int:
        return hash((self.kind, self.ref))

    def __str__(self) -> str:
        prefix = "&" * self.ref
        if self.kind is TypeKind.FN:
            fn = self.spec
            args = ", ".join(str(arg.type) for arg in fn.args)
            text = f"fn ({args})"
            if fn.returns is not None:
                text += f" {fn.returns.type}"
            return prefix + text
        return prefix + _KIND_NAMES[self.kind]

    def is_signed_int(self) -> bool:
        return self.ref == 0 and self.kind not in _UNSIGNED


@dataclass(eq=False, kw_only=True)
class Node:
    """Base of all tree nodes; ``memory`` marks nodes that denote a storage location."""

    token: Token
    type: Type = field(default_factory=Type)
    memory: bool = False


@dataclass(eq=False, kw_only=True)
class Atom(Node):
    defined: Node | None = None


@dataclass(eq=False, kw_only=True)
class Call(Node):
    fn: Node
    args: list[Node] = field(default_factory=list)


@dataclass(eq=False, kw_only=True)
class Unary(Node):
    operand: Node


@dataclass(eq=False, kw_only=True)
class Binary(Node):
    lhs: Node
    rhs: Node


@dataclass(eq=False, kw_only=True)
class Debug(Node):
    operand: Node


@dataclass(eq=False, kw_only=True)
class If(Node):
    condition: Node
    consequent: Node
    antecedent: Node


@dataclass(eq=False, kw_only=True)
class While(Node):
    condition: Node
    body: Node


@dataclass(eq=False, kw_only=True)
class Return(Node):
    operand: Node | None = None


class LetKind(Enum):
    GLOBAL = auto()
    LOCAL = auto()
    ARG = auto()
    LOCAL_ARG = auto()


@dataclass(eq=False, kw_only=True)
class Let(Node):
    """A variable or argument definition.

    ``let x = <expr>`` sets only ``assign``, ``let x <type>`` only ``def_type``,
    ``let x <type> = <expr>`` both.
    """

    kind: LetKind = LetKind.GLOBAL
    assign: Node | None = None
    def_type: Node | None = None


@dataclass(eq=False, kw_only=True)
class Block(Node):
    nodes: list[Node] = field(default_factory=list)


@dataclass(eq=False, kw_only=True)
class Fn(Node):
    args: list[Let] = field(default_factory=list)
    body: Block
    returns: Node | None = None
    locals: list[Node] = field(default_factory=list)

    def return_type(self) -> Type:
        if self.returns is None:
            return Type(TypeKind.UNIT)
        return self.returns.type
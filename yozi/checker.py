"""Name resolution and type checking of the syntax tree."""

from __future__ import annotations

from dataclasses import replace

from .nodes import (
    Atom,
    Binary,
    Block,
    Call,
    Debug,
    Fn,
    If,
    Let,
    LetKind,
    Node,
    Return,
    Type,
    TypeKind,
    Unary,
    While,
)
from .token import CompileError, TokenKind

_INTEGER_KINDS = frozenset(
    {
        TypeKind.I8,
        TypeKind.I16,
        TypeKind.I32,
        TypeKind.I64,
        TypeKind.U8,
        TypeKind.U16,
        TypeKind.U32,
        TypeKind.U64,
    }
)

# Typed integer kind -> token kind and width an untyped literal is converted to.
_LITERAL_CONVERSIONS: dict[TypeKind, tuple[TokenKind, int]] = {
    TypeKind.I8: (TokenKind.I8, 8),
    TypeKind.I16: (TokenKind.I16, 16),
    TypeKind.I32: (TokenKind.I32, 32),
    TypeKind.I64: (TokenKind.I64, 64),
    TypeKind.U8: (TokenKind.U8, 8),
    TypeKind.U16: (TokenKind.U16, 16),
    TypeKind.U32: (TokenKind.U32, 32),
    TypeKind.U64: (TokenKind.U64, 64),
}

_TYPE_NAMES: dict[str, TypeKind] = {
    "i8": TypeKind.I8,
    "i16": TypeKind.I16,
    "i32": TypeKind.I32,
    "i64": TypeKind.I64,
    "u8": TypeKind.U8,
    "u16": TypeKind.U16,
    "u32": TypeKind.U32,
    "u64": TypeKind.U64,
    "bool": TypeKind.BOOL,
    "rawptr": TypeKind.RAWPTR,
}

_LITERAL_TYPES: dict[TokenKind, TypeKind] = {
    TokenKind.I8: TypeKind.I8,
    TokenKind.I16: TypeKind.I16,
    TokenKind.I32: TypeKind.I32,
    TokenKind.I64: TypeKind.I64,
    TokenKind.INT: TypeKind.I64,
    TokenKind.U8: TypeKind.U8,
    TokenKind.U16: TypeKind.U16,
    TokenKind.U32: TypeKind.U32,
    TokenKind.U64: TypeKind.U64,
    TokenKind.BOOL: TypeKind.BOOL,
}

_ARITHMETIC_OPS = frozenset(
    {
        TokenKind.ADD,
        TokenKind.SUB,
        TokenKind.MUL,
        TokenKind.DIV,
        TokenKind.SHL,
        TokenKind.SHR,
        TokenKind.BOR,
        TokenKind.BAND,
    }
)
_LOGICAL_OPS = frozenset({TokenKind.LOR, TokenKind.LAND})
_COMPARISON_OPS = frozenset(
    {TokenKind.GT, TokenKind.GE, TokenKind.LT, TokenKind.LE, TokenKind.EQ, TokenKind.NE}
)

_BOOL = Type(TypeKind.BOOL)
_UNIT = Type(TypeKind.UNIT)
_POINTER_SIZED = frozenset({TypeKind.I64, TypeKind.U64, TypeKind.RAWPTR})


def type_kind_is_integer(kind: TypeKind) -> bool:
    return kind in _INTEGER_KINDS


def type_is_scalar(type_: Type) -> bool:
    return (
        type_.kind in (TypeKind.BOOL, TypeKind.RAWPTR)
        or type_kind_is_integer(type_.kind)
        or type_.ref != 0
    )


def _type_assert(node: Node, expected: Type) -> Type:
    actual = node.type
    if actual == expected:
        return actual

    # An untyped integer literal takes on the expected integer type.
    if (
        expected.ref == 0
        and type_kind_is_integer(expected.kind)
        and isinstance(node, Atom)
        and node.token.kind is TokenKind.INT
    ):
        kind, bits = _LITERAL_CONVERSIONS[expected.kind]
        node.token.kind = kind
        node.type = expected
        node.token.parse_integer(bits)
        return expected

    raise CompileError(f"Expected type {expected}, got {actual}", node.token.pos)


def _type_assert_arith(node: Node) -> Type:
    actual = node.type
    if not type_kind_is_integer(actual.kind) and actual.ref == 0:
        raise CompileError(f"Expected arithmetic type, got {actual}", node.token.pos)
    return actual


def _type_assert_scalar(node: Node) -> Type:
    actual = node.type
    if not type_is_scalar(actual):
        raise CompileError(f"Expected scalar type, got {actual}", node.token.pos)
    return actual


def _cast_fails(source: Type, target: Type) -> bool:
    if not type_is_scalar(source) or not type_is_scalar(target):
        return True
    if source.kind is TypeKind.FN or target.kind is TypeKind.FN:
        return True
    if (source == _BOOL and target.ref != 0) or (target == _BOOL and source.ref != 0):
        return True
    if target.ref != 0 and source.ref == 0 and source.kind not in _POINTER_SIZED:
        return True
    if source.ref != 0 and target.ref == 0 and target.kind not in _POINTER_SIZED:
        return True
    return False


def _type_assert_castable(cast: Node, source: Node, target: Node) -> Type:
    to_type = target.type
    from_type = source.type
    if _cast_fails(from_type, to_type):
        raise CompileError(
            f"Cannot cast from {from_type} to {to_type}", cast.token.pos
        )
    return to_type


def _undefined(node: Node, label: str) -> CompileError:
    return CompileError(f"Undefined {label} '{node.token.text}'", node.token.pos)


def _redefinition(node: Node, previous: Node, label: str) -> CompileError:
    return CompileError(
        f"Redefinition of {label} '{node.token.text}'",
        node.token.pos,
        [(previous.token.pos, "Defined here")],
    )


def _mark_memory(node: Node) -> None:
    if isinstance(node, Atom):
        defined = node.defined
        if isinstance(defined, Let) and defined.kind is LetKind.ARG:
            defined.kind = LetKind.LOCAL_ARG
    elif isinstance(node, Unary):
        _mark_memory(node.operand)
    elif isinstance(node, Binary):
        _mark_memory(node.lhs)
    else:
        raise TypeError(f"unexpected memory node {type(node).__name__}")


def _check_if_memory(node: Node, message: str) -> None:
    if not node.memory:
        raise CompileError(message, node.token.pos)
    _mark_memory(node)


class Context:
    """Checking state: the global definitions and the scope of the current function."""

    def __init__(self) -> None:
        self.globals: dict[str, Node] = {}
        self._locals: list[Let] = []
        self._current_fn: Fn | None = None

    def _check_type(self, node: Node) -> None:
        if isinstance(node, Atom):
            kind = _TYPE_NAMES.get(node.token.text)
            if kind is None:
                raise _undefined(node, "type")
            node.type = Type(kind)
        elif isinstance(node, Unary):
            self._check_type(node.operand)
            node.type = replace(node.operand.type, ref=node.operand.type.ref + 1)
        elif isinstance(node, Fn):
            for arg in node.args:
                self._check_type(arg.def_type)
                arg.type = arg.def_type.type
            if node.returns is not None:
                self._check_type(node.returns)
            node.type = Type(TypeKind.FN, spec=node)
        else:
            raise TypeError(f"unexpected type node {type(node).__name__}")

    def _argument_find(self, name: str, until: int) -> Let | None:
        return next(
            (arg for arg in self._current_fn.args[:until] if arg.token.text == name),
            None,
        )

    def _variable_find(self, name: str) -> Node | None:
        if self._current_fn is not None:
            for local in reversed(self._locals):
                if local.token.text == name:
                    return local
            arg = self._argument_find(name, len(self._current_fn.args))
            if arg is not None:
                return arg
        return self.globals.get(name)

    def check(self, node: Node) -> None:
        """Resolve names in ``node`` and assign types, raising ``CompileError`` on misuse."""
        match node:
            case Atom():
                self._check_atom(node)
            case Call():
                self._check_call(node)
            case Unary():
                self._check_unary(node)
            case Binary():
                self._check_binary(node)
            case Debug():
                self._check_debug(node)
            case Block():
                scope_start = len(self._locals)
                for item in node.nodes:
                    self.check(item)
                del self._locals[scope_start:]
            case If():
                self.check(node.condition)
                _type_assert(node.condition, _BOOL)
                self.check(node.consequent)
                self.check(node.antecedent)
            case While():
                self.check(node.condition)
                _type_assert(node.condition, _BOOL)
                self.check(node.body)
            case Return():
                self._check_return(node)
            case Fn():
                self._check_fn(node)
            case Let():
                self._check_let(node)
            case _:
                raise TypeError(f"unexpected node {type(node).__name__}")

    def _check_atom(self, node: Atom) -> None:
        kind = node.token.kind
        if kind in _LITERAL_TYPES:
            node.type = Type(_LITERAL_TYPES[kind])
        elif kind is TokenKind.IDENT:
            defined = self._variable_find(node.token.text)
            if defined is None:
                raise _undefined(node, "identifier")
            node.defined = defined
            node.type = defined.type
            node.memory = isinstance(defined, Let)
        else:
            raise TypeError(f"unexpected atom token {kind.name}")

    def _check_call(self, node: Call) -> None:
        self.check(node.fn)

        fn_pos = node.fn.token.pos
        fn_type = node.fn.type
        if fn_type.kind is not TypeKind.FN:
            raise CompileError(f"Expected function, got {fn_type}", fn_pos)
        if fn_type.ref != 0:
            raise CompileError(
                "Cannot call pointer to function. Dereference it first", fn_pos
            )

        signature = fn_type.spec
        if len(node.args) != len(signature.args):
            raise CompileError(
                f"Expected {len(signature.args)} arguments, got {len(node.args)}",
                node.token.pos,
            )

        for arg, param in zip(node.args, signature.args):
            self.check(arg)
            _type_assert(arg, param.type)

        node.type = signature.return_type()

    def _check_unary(self, node: Unary) -> None:
        kind = node.token.kind
        self.check(node.operand)
        operand = node.operand

        if kind in (TokenKind.SUB, TokenKind.BNOT):
            node.type = _type_assert_arith(operand)
        elif kind is TokenKind.MUL:
            operand_type = operand.type
            if operand_type.ref == 0:
                if operand_type.kind is TypeKind.RAWPTR:
                    raise CompileError("Cannot dereference raw pointer", operand.token.pos)
                raise CompileError(
                    f"Expected pointer, got {operand_type}", operand.token.pos
                )
            node.type = replace(operand_type, ref=operand_type.ref - 1)
            node.memory = True
        elif kind is TokenKind.BAND:
            _check_if_memory(operand, "Cannot take reference of value not in memory")
            node.type = replace(operand.type, ref=operand.type.ref + 1)
        elif kind is TokenKind.LNOT:
            node.type = _type_assert(operand, _BOOL)
        else:
            raise TypeError(f"unexpected unary operator {kind.name}")

    def _check_binary(self, node: Binary) -> None:
        kind = node.token.kind
        if kind in _ARITHMETIC_OPS:
            self.check(node.lhs)
            self.check(node.rhs)
            node.type = _type_assert(node.rhs, _type_assert_arith(node.lhs))
        elif kind in _LOGICAL_OPS:
            self.check(node.lhs)
            self.check(node.rhs)
            node.type = _type_assert(node.rhs, _type_assert(node.lhs, _BOOL))
        elif kind is TokenKind.SET:
            self.check(node.lhs)
            _check_if_memory(node.lhs, "Cannot assign to value not in memory")
            self.check(node.rhs)
            _type_assert(node.rhs, node.lhs.type)
            node.type = _UNIT
        elif kind in _COMPARISON_OPS:
            self.check(node.lhs)
            self.check(node.rhs)
            _type_assert(node.rhs, _type_assert_arith(node.lhs))
            node.type = _BOOL
        elif kind is TokenKind.AS:
            self.check(node.lhs)
            self._check_type(node.rhs)
            node.type = _type_assert_castable(node, node.lhs, node.rhs)
        else:
            raise TypeError(f"unexpected binary operator {kind.name}")

    def _check_debug(self, node: Debug) -> None:
        self.check(node.operand)
        kind = node.token.kind
        if kind is TokenKind.DEBUG_ALLOC:
            _type_assert(node.operand, Type(TypeKind.U64))
            node.type = Type(TypeKind.RAWPTR)
        elif kind is TokenKind.DEBUG_PRINT:
            _type_assert_scalar(node.operand)
        else:
            raise TypeError(f"unexpected intrinsic {kind.name}")

    def _check_return(self, node: Return) -> None:
        fn = self._current_fn
        if node.operand is not None:
            self.check(node.operand)
            node.type = node.operand.type
        elif fn.returns is not None:
            node.type = _UNIT
        _type_assert(node, fn.return_type())

    def _check_fn(self, node: Fn) -> None:
        name = node.token.text
        if name in self.globals:
            raise _redefinition(node, self.globals[name], "global identifier")

        node.type = Type(TypeKind.FN, spec=node)

        self._current_fn = node
        scope_start = len(self._locals)
        try:
            for index, arg in enumerate(node.args):
                previous = self._argument_find(arg.token.text, index)
                if previous is not None:
                    raise _redefinition(arg, previous, "argument")
                self._check_type(arg.def_type)
                arg.type = arg.def_type.type

            if node.returns is not None:
                self._check_type(node.returns)

            self.globals[name] = node
            self.check(node.body)

            if node.returns is not None:
                nodes = node.body.nodes
                if not nodes or not isinstance(nodes[-1], Return):
                    raise CompileError(
                        "Expected last statement to be 'return'", node.body.token.pos
                    )
        finally:
            del self._locals[scope_start:]
            self._current_fn = None

    def _check_let(self, node: Let) -> None:
        name = node.token.text
        is_global = node.kind is LetKind.GLOBAL
        if is_global and name in self.globals:
            raise _redefinition(node, self.globals[name], "global identifier")

        if node.def_type is not None:
            self._check_type(node.def_type)
            node.type = node.def_type.type

        if node.assign is not None:
            self.check(node.assign)
            assign_type = node.assign.type
            if assign_type == _UNIT:
                raise CompileError(
                    f"Cannot define variable with type {assign_type}", node.token.pos
                )
            if node.def_type is not None:
                _type_assert(node.assign, node.type)
            else:
                node.type = assign_type

        if is_global:
            self.globals[name] = node
        else:
            self._locals.append(node)
            self._current_fn.locals.append(node)
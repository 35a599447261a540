"""Lowering of a checked program to LLVM IR and linking it with clang."""

from __future__ import annotations

import subprocess
from pathlib import Path

from .checker import Context
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

_LLVM_NAMES = {
    TypeKind.BOOL: "i1",
    TypeKind.I8: "i8",
    TypeKind.U8: "i8",
    TypeKind.I16: "i16",
    TypeKind.U16: "i16",
    TypeKind.I32: "i32",
    TypeKind.U32: "i32",
    TypeKind.I64: "i64",
    TypeKind.U64: "i64",
    TypeKind.UNIT: "void",
    TypeKind.RAWPTR: "i8*",
}

_INT_SIZES = {
    TypeKind.I8: 8,
    TypeKind.U8: 8,
    TypeKind.I16: 16,
    TypeKind.U16: 16,
    TypeKind.I32: 32,
    TypeKind.U32: 32,
    TypeKind.I64: 64,
    TypeKind.U64: 64,
}

# Operators whose choice of instruction depends on the signedness of the operands.
_COMPARISONS = {
    TokenKind.GT: ("icmp sgt", "icmp ugt"),
    TokenKind.GE: ("icmp sge", "icmp uge"),
    TokenKind.LT: ("icmp slt", "icmp ult"),
    TokenKind.LE: ("icmp sle", "icmp ule"),
}

_ARITHMETIC = {
    TokenKind.ADD: "add",
    TokenKind.SUB: "sub",
    TokenKind.MUL: "mul",
    TokenKind.SHL: "shl",
    TokenKind.BOR: "or",
    TokenKind.BAND: "and",
}

_UNIT = Type(TypeKind.UNIT)

_PRINT_FORMAT = r'@.print = private unnamed_addr constant [5 x i8] c"%ld\0A\00"'

_MISSING_MAIN = (
    "The entry function 'main' has not been defined\n"
    "\n"
    "+ fn main() {\n"
    "+     // This function MUST be defined\n"
    "+ }"
)


def llvm_format_type(type_: Type) -> str:
    """Return the LLVM spelling of ``type_``."""
    if type_.kind is TypeKind.FN:
        fn = type_.spec
        args = ", ".join(llvm_format_type(arg.type) for arg in fn.args)
        base = f"{llvm_format_type(fn.return_type())} ({args})*"
    else:
        try:
            base = _LLVM_NAMES[type_.kind]
        except KeyError:
            raise ValueError(f"no LLVM type for {type_.kind.name}") from None
    return base + "*" * type_.ref


def _is_null_initialised(type_: Type) -> bool:
    return type_.ref != 0 or type_.kind in (TypeKind.FN, TypeKind.RAWPTR)


class _Emitter:
    """Writes instructions, numbering values and labels within one function."""

    def __init__(self) -> None:
        self.lines: list[str] = []
        self._values = 0
        self._labels = 0

    def reset(self) -> None:
        self._values = 0
        self._labels = 0

    def emit(self, line: str) -> None:
        self.lines.append(line)

    def _value(self) -> str:
        self._values += 1
        return f"%{self._values - 1}"

    def _label(self) -> str:
        self._labels += 1
        return f"L{self._labels - 1}"

    def _binary_op(self, node: Binary, op: str) -> str:
        lhs = self.expr(node.lhs)
        rhs = self.expr(node.rhs)
        result = self._value()
        self.emit(f"    {result} = {op} {llvm_format_type(node.lhs.type)} {lhs}, {rhs}")
        return result

    def _binary_arith_op(self, node: Binary, op: str) -> str:
        """Like ``_binary_op``, but pointer operands go through i64."""
        lhs = self.expr(node.lhs)
        rhs = self.expr(node.rhs)

        expr_type = node.lhs.type
        llvm_type = llvm_format_type(expr_type)
        if expr_type.ref == 0:
            result = self._value()
            self.emit(f"    {result} = {op} {llvm_type} {lhs}, {rhs}")
            return result

        lhs_temp = self._value()
        rhs_temp = self._value()
        self.emit(f"    {lhs_temp} = ptrtoint {llvm_type} {lhs} to i64")
        self.emit(f"    {rhs_temp} = ptrtoint {llvm_type} {rhs} to i64")

        temp = self._value()
        self.emit(f"    {temp} = {op} i64 {lhs_temp}, {rhs_temp}")
        result = self._value()
        self.emit(f"    {result} = inttoptr i64 {temp} to {llvm_type}")
        return result

    def _binary_logical_op(self, node: Binary) -> str:
        eval_rhs = self._label()
        short_circuit = self._label()
        merge = self._label()

        lhs = self.expr(node.lhs)
        if node.token.kind is TokenKind.LOR:
            self.emit(f"    br i1 {lhs}, label %{short_circuit}, label %{eval_rhs}")
            short_value = 1
        elif node.token.kind is TokenKind.LAND:
            self.emit(f"    br i1 {lhs}, label %{eval_rhs}, label %{short_circuit}")
            short_value = 0
        else:
            raise TypeError(f"unexpected logical operator {node.token.kind.name}")
        self.emit(f"{eval_rhs}:")

        rhs = self.expr(node.rhs)
        self.emit(f"    br label %{merge}")
        self.emit(f"{short_circuit}:")
        self.emit(f"    br label %{merge}")
        self.emit(f"{merge}:")

        result = self._value()
        self.emit(
            f"    {result} = phi i1 [ {short_value}, %{short_circuit} ], "
            f"[ {rhs}, %{eval_rhs} ]"
        )
        return result

    def _cast_op(self, source: Node, target: Node) -> str:
        source_expr = self.expr(source)
        to_type = target.type
        from_type = source.type
        if from_type == to_type:
            return source_expr

        llvm_to = llvm_format_type(to_type)
        llvm_from = llvm_format_type(from_type)
        to_size = _INT_SIZES.get(to_type.kind)
        from_size = _INT_SIZES.get(from_type.kind)

        if from_type.ref != 0 or from_type.kind is TypeKind.RAWPTR:
            if to_type.ref != 0 or to_type.kind is TypeKind.RAWPTR:
                command = "bitcast"
            else:
                command = "ptrtoint"
        elif from_type.kind is TypeKind.BOOL:
            command = "zext"
        elif from_size is not None:
            if to_type.ref != 0:
                command = "inttoptr"
            elif to_type.kind is TypeKind.BOOL:
                result = self._value()
                self.emit(f"    {result} = icmp ne {llvm_from} {source_expr}, 0")
                return result
            elif to_size is not None:
                if from_size == to_size:
                    return source_expr
                if from_size < to_size:
                    command = "sext" if from_type.is_signed_int() else "zext"
                else:
                    command = "trunc"
            else:
                raise TypeError(f"cannot cast {from_type} to {to_type}")
        else:
            raise TypeError(f"cannot cast {from_type} to {to_type}")

        result = self._value()
        self.emit(f"    {result} = {command} {llvm_from} {source_expr} to {llvm_to}")
        return result

    def expr(self, node: Node, ref: bool = False) -> str:
        """Emit ``node`` as an expression; return the value holding it."""
        match node:
            case Atom():
                return self._atom(node, ref)
            case Call():
                return self._call(node)
            case Unary():
                return self._unary(node, ref)
            case Binary():
                return self._binary(node)
            case Debug():
                return self._debug(node)
            case _:
                raise TypeError(f"unexpected expression {type(node).__name__}")

    def _atom(self, node: Atom, ref: bool) -> str:
        tok = node.token
        if tok.is_integer() or tok.kind is TokenKind.BOOL:
            return str(tok.value)
        if tok.kind is not TokenKind.IDENT:
            raise TypeError(f"unexpected atom token {tok.kind.name}")

        defined = node.defined
        if isinstance(defined, Fn) or (
            isinstance(defined, Let) and defined.kind is LetKind.ARG
        ):
            ref = True

        name = defined.token.text
        if ref:
            return name

        llvm_type = llvm_format_type(node.type)
        result = self._value()
        self.emit(f"    {result} = load {llvm_type}, {llvm_type}* {name}")
        return result

    def _call(self, node: Call) -> str:
        fn = self.expr(node.fn)
        args = [self.expr(arg) for arg in node.args]

        result = ""
        prefix = "    "
        if node.type != _UNIT:
            result = self._value()
            prefix += f"{result} = "

        arg_types = [llvm_format_type(arg.type) for arg in node.args]
        signature = ", ".join(arg_types)
        values = ", ".join(f"{t} {v}" for t, v in zip(arg_types, args))
        self.emit(f"{prefix}call {llvm_format_type(node.type)}({signature}) {fn}({values})")
        return result

    def _unary(self, node: Unary, ref: bool) -> str:
        kind = node.token.kind
        if kind is TokenKind.BAND:
            return self.expr(node.operand, True)

        operand = self.expr(node.operand)
        if kind is TokenKind.SUB:
            result = self._value()
            self.emit(f"    {result} = sub {llvm_format_type(node.operand.type)} 0, {operand}")
            return result
        if kind is TokenKind.MUL:
            if ref:
                return operand
            llvm_type = llvm_format_type(node.type)
            result = self._value()
            self.emit(f"    {result} = load {llvm_type}, {llvm_type}* {operand}")
            return result
        if kind is TokenKind.BNOT:
            result = self._value()
            self.emit(f"    {result} = xor {llvm_format_type(node.operand.type)} {operand}, -1")
            return result
        if kind is TokenKind.LNOT:
            result = self._value()
            self.emit(f"    {result} = xor i1 {operand}, true")
            return result
        raise TypeError(f"unexpected unary operator {kind.name}")

    def _binary(self, node: Binary) -> str:
        kind = node.token.kind
        if kind in _ARITHMETIC:
            return self._binary_arith_op(node, _ARITHMETIC[kind])
        if kind is TokenKind.DIV:
            return self._binary_arith_op(node, "sdiv" if node.type.is_signed_int() else "udiv")
        if kind is TokenKind.SHR:
            return self._binary_arith_op(node, "ashr" if node.type.is_signed_int() else "lshr")
        if kind in (TokenKind.LOR, TokenKind.LAND):
            return self._binary_logical_op(node)
        if kind is TokenKind.SET:
            lhs = self.expr(node.lhs, True)
            rhs = self.expr(node.rhs)
            llvm_type = llvm_format_type(node.lhs.type)
            self.emit(f"    store {llvm_type} {rhs}, {llvm_type}* {lhs}")
            return ""
        if kind in _COMPARISONS:
            signed, unsigned = _COMPARISONS[kind]
            return self._binary_op(node, signed if node.lhs.type.is_signed_int() else unsigned)
        if kind is TokenKind.EQ:
            return self._binary_op(node, "icmp eq")
        if kind is TokenKind.NE:
            return self._binary_op(node, "icmp ne")
        if kind is TokenKind.AS:
            return self._cast_op(node.lhs, node.rhs)
        raise TypeError(f"unexpected binary operator {kind.name}")

    def _debug(self, node: Debug) -> str:
        operand = self.expr(node.operand)
        kind = node.token.kind
        if kind is TokenKind.DEBUG_ALLOC:
            result = self._value()
            self.emit(f"    {result} = call i8* (i64) @malloc(i64 {operand})")
            return result
        if kind is TokenKind.DEBUG_PRINT:
            fmt_pointer = self._value()
            self.emit(
                f"    {fmt_pointer} = getelementptr [5 x i8], [5 x i8]* @.print, i64 0, i64 0"
            )
            self._value()  # the call's own result
            self.emit(
                f"    call i32 (i8*, ...) @printf(i8* {fmt_pointer}, "
                f"{llvm_format_type(node.operand.type)} {operand})"
            )
            return ""
        raise TypeError(f"unexpected intrinsic {kind.name}")

    def stmt(self, node: Node) -> None:
        """Emit ``node`` as a statement."""
        match node:
            case Block():
                for item in node.nodes:
                    self.stmt(item)
            case If():
                consequent = self._label()
                antecedent = self._label()
                confluence = self._label()

                condition = self.expr(node.condition)
                self.emit(f"    br i1 {condition}, label %{consequent}, label %{antecedent}")
                self.emit(f"{consequent}:")
                self.stmt(node.consequent)
                self.emit(f"    br label %{confluence}")
                self.emit(f"{antecedent}:")
                self.stmt(node.antecedent)
                self.emit(f"    br label %{confluence}")
                self.emit(f"{confluence}:")
            case While():
                start = self._label()
                body = self._label()
                finish = self._label()

                self.emit(f"    br label %{start}")
                self.emit(f"{start}:")
                condition = self.expr(node.condition)
                self.emit(f"    br i1 {condition}, label %{body}, label %{finish}")
                self.emit(f"{body}:")
                self.stmt(node.body)
                self.emit(f"    br label %{start}")
                self.emit(f"{finish}:")
            case Return():
                if node.operand is not None:
                    value = self.expr(node.operand)
                    self.emit(f"    ret {llvm_format_type(node.type)} {value}")
                else:
                    self.emit("    ret void")
                # A terminator opens an implicit block that takes a number.
                self._value()
            case Let():
                llvm_type = llvm_format_type(node.type)
                if node.assign is not None:
                    value = self.expr(node.assign)
                elif _is_null_initialised(node.type):
                    value = "null"
                else:
                    value = "0"
                self.emit(f"    store {llvm_type} {value}, {llvm_type}* {node.token.text}")
            case _:
                self.expr(node)

    def function(self, fn: Fn) -> None:
        return_type = fn.return_type()
        params = []
        for index, arg in enumerate(fn.args):
            arg.token.text = f"%a{index}"
            params.append(f"{llvm_format_type(arg.type)} {arg.token.text}")
        self.emit(f"define {llvm_format_type(return_type)} {fn.token.text}({', '.join(params)}) {{")
        self.emit("$0:")

        for index, arg in enumerate(fn.args):
            if arg.kind is LetKind.LOCAL_ARG:
                arg.token.text = f"%v{index}"
                llvm_type = llvm_format_type(arg.type)
                self.emit(f"    {arg.token.text} = alloca {llvm_type}")
                self.emit(f"    store {llvm_type} %a{index}, {llvm_type}* {arg.token.text}")

        for index, local in enumerate(fn.locals, start=len(fn.args)):
            if isinstance(local, Let):
                local.token.text = f"%v{index}"
                self.emit(f"    {local.token.text} = alloca {llvm_format_type(local.type)}")

        self.stmt(fn.body)
        if return_type == _UNIT:
            self.emit("    ret void")
        self.emit("}")


def ensure_main_function(context: Context) -> None:
    """Check that a valid ``main`` exists and rename it out of the way of the C entry point."""
    main = context.globals.get("main")
    if main is None:
        raise CompileError(_MISSING_MAIN)

    pos = main.token.pos
    main_type = main.type
    if main_type.kind is not TypeKind.FN:
        raise CompileError("The identifier 'main' must be a function", pos)
    if main_type.ref != 0:
        raise CompileError("The entry function 'main' cannot be a pointer", pos)

    main_fn = main_type.spec
    if main_fn.args:
        raise CompileError("The entry function 'main' cannot take any arguments", pos)
    if main_fn.returns is not None:
        raise CompileError("The entry function 'main' cannot return anything", pos)

    main_fn.token.text = ".main"


def _normalize_global_names(context: Context) -> None:
    for definition in context.globals.values():
        if isinstance(definition, (Fn, Let)):
            definition.token.text = "@" + definition.token.text


def emit_program(context: Context) -> str:
    """Return the LLVM IR of a checked program; renames the definitions it emits."""
    ensure_main_function(context)
    _normalize_global_names(context)

    emitter = _Emitter()
    for definition in context.globals.values():
        emitter.reset()
        if isinstance(definition, Fn):
            emitter.function(definition)
        elif isinstance(definition, Let):
            value = "null" if _is_null_initialised(definition.type) else "0"
            emitter.emit(
                f"{definition.token.text} = global {llvm_format_type(definition.type)} {value}"
            )
        else:
            raise TypeError(f"unexpected global {type(definition).__name__}")

    emitter.emit(_PRINT_FORMAT)
    emitter.emit("declare i32 @printf(i8*, ...)")
    emitter.emit("declare i8* @malloc(i64)")

    emitter.reset()
    emitter.emit("define i32 @main() {")
    emitter.emit("$0:")
    for definition in context.globals.values():
        if isinstance(definition, Let):
            emitter.stmt(definition)
    emitter.emit("    call void @.main()")
    emitter.emit("    ret i32 0")
    emitter.emit("}")

    return "".join(line + "\n" for line in emitter.lines)


def compile_program(context: Context, exe_path: str | Path) -> Path:
    """Write ``<exe_path>.ll`` and link it into ``exe_path`` with clang; return the IR path."""
    exe_path = str(exe_path)
    asm_path = Path(exe_path + ".ll")
    try:
        asm_path.write_text(emit_program(context))
    except OSError as error:
        raise CompileError(str(error)) from error

    try:
        completed = subprocess.run(
            ["clang", "-Wno-override-module", "-o", exe_path, str(asm_path)]
        )
    except OSError as error:
        raise CompileError(str(error)) from error

    if completed.returncode != 0:
        raise CompileError(f"exit status {completed.returncode}")
    return asm_path
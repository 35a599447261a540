from unittest import mock

import pytest

from yozi.checker import Context
from yozi.compiler import (
    compile_program,
    emit_program,
    ensure_main_function,
    llvm_format_type,
)
from yozi.nodes import (
    Atom,
    Binary,
    Block,
    Debug,
    Fn,
    Let,
    LetKind,
    Return,
    Type,
    TypeKind,
    Unary,
)
from yozi.token import CompileError, Pos, Token, TokenKind


def tok(kind, text="", value=0):
    return Token(kind=kind, pos=Pos("t.yo", 0, 0), text=text, value=value)


def ident(name):
    return Atom(token=tok(TokenKind.IDENT, name))


def type_name(name):
    return Atom(token=tok(TokenKind.IDENT, name))


def integer(n):
    t = tok(TokenKind.INT, str(n))
    t.parse_integer(64)
    return Atom(token=t)


def block(*nodes):
    return Block(token=tok(TokenKind.LBRACE, "{"), nodes=list(nodes))


def function(name, *body, args=(), returns=None):
    return Fn(token=tok(TokenKind.IDENT, name), args=list(args), body=block(*body), returns=returns)


def arg(name, type_text):
    return Let(token=tok(TokenKind.IDENT, name), kind=LetKind.ARG, def_type=type_name(type_text))


def debug_print(operand):
    return Debug(token=tok(TokenKind.DEBUG_PRINT, "#print"), operand=operand)


def checked(*nodes):
    context = Context()
    for node in nodes:
        context.check(node)
    return context


def test_llvm_format_type_scalars():
    assert llvm_format_type(Type(TypeKind.BOOL)) == "i1"
    assert llvm_format_type(Type(TypeKind.UNIT)) == "void"
    assert llvm_format_type(Type(TypeKind.RAWPTR)) == "i8*"
    assert llvm_format_type(Type(TypeKind.U32, ref=2)) == "i32**"


def test_llvm_format_type_signed_and_unsigned_share_spelling():
    for signed, unsigned in [
        (TypeKind.I8, TypeKind.U8),
        (TypeKind.I16, TypeKind.U16),
        (TypeKind.I32, TypeKind.U32),
        (TypeKind.I64, TypeKind.U64),
    ]:
        assert llvm_format_type(Type(signed)) == llvm_format_type(Type(unsigned))


def test_llvm_format_type_function():
    fn = Fn(
        token=tok(TokenKind.IDENT, "f"),
        args=[
            Let(token=tok(TokenKind.IDENT, "a"), kind=LetKind.ARG, type=Type(TypeKind.I64)),
            Let(token=tok(TokenKind.IDENT, "b"), kind=LetKind.ARG, type=Type(TypeKind.BOOL)),
        ],
        body=block(),
        returns=Atom(token=tok(TokenKind.IDENT, "i32"), type=Type(TypeKind.I32)),
    )
    assert llvm_format_type(Type(TypeKind.FN, spec=fn)) == "i32 (i64, i1)*"


def test_missing_main():
    with pytest.raises(CompileError) as info:
        ensure_main_function(Context())
    assert str(info.value).startswith("ERROR: The entry function 'main' has not been defined")


def test_main_with_arguments_rejected():
    context = checked(function("main", args=[arg("x", "i64")]))
    with pytest.raises(CompileError, match="cannot take any arguments"):
        ensure_main_function(context)


def test_main_returning_value_rejected():
    context = checked(function("main", Return(token=tok(TokenKind.RETURN, "return"), operand=integer(1)), returns=type_name("i64")))
    with pytest.raises(CompileError, match="cannot return anything"):
        ensure_main_function(context)


def test_main_must_be_function():
    main = Let(token=tok(TokenKind.IDENT, "main"), kind=LetKind.GLOBAL, assign=integer(3))
    context = checked(main)
    with pytest.raises(CompileError, match="must be a function"):
        ensure_main_function(context)


def test_valid_main_is_renamed():
    main = function("main")
    ensure_main_function(checked(main))
    assert main.token.text == ".main"


def test_emit_print_program():
    ir = emit_program(checked(function("main", debug_print(integer(42)))))
    lines = ir.splitlines()
    assert "define void @.main() {" in lines
    assert "    call i32 (i8*, ...) @printf(i8* %0, i64 42)" in lines
    assert "declare i32 @printf(i8*, ...)" in lines
    assert lines[-3:] == ["    call void @.main()", "    ret i32 0", "}"]


def test_emit_global_variable():
    glob = Let(token=tok(TokenKind.IDENT, "g"), kind=LetKind.GLOBAL, def_type=type_name("u8"), assign=integer(7))
    ir = emit_program(checked(glob, function("main")))
    lines = ir.splitlines()
    assert "@g = global i8 0" in lines
    assert "    store i8 7, i8* @g" in lines
    assert lines.index("define i32 @main() {") < lines.index("    store i8 7, i8* @g")


def test_emit_function_with_arguments():
    a, b = arg("a", "i64"), arg("b", "i64")
    add = Binary(token=tok(TokenKind.ADD, "+"), lhs=ident("a"), rhs=ident("b"))
    ret = Return(token=tok(TokenKind.RETURN, "return"), operand=add)
    add_fn = function("add", ret, args=[a, b], returns=type_name("i64"))
    ir = emit_program(checked(add_fn, function("main")))
    lines = ir.splitlines()
    define = next(line for line in lines if line.startswith("define i64 @add("))
    assert "%a0" in define and "%a1" in define
    assert "    %0 = add i64 %a0, %a1" in lines
    assert "    ret i64 %0" in lines


def test_reference_to_argument_spills_it():
    a = arg("a", "i64")
    ref = Unary(token=tok(TokenKind.BAND, "&"), operand=ident("a"))
    take = function("take", Let(token=tok(TokenKind.IDENT, "p"), kind=LetKind.LOCAL, assign=ref), args=[a])
    ir = emit_program(checked(take, function("main")))
    assert a.kind is LetKind.LOCAL_ARG
    assert a.token.text == "%v0"
    assert "    %v0 = alloca i64" in ir.splitlines()


def test_logical_and_uses_phi():
    cond = Binary(
        token=tok(TokenKind.LAND, "&&"),
        lhs=Atom(token=tok(TokenKind.BOOL, "true", 1)),
        rhs=Atom(token=tok(TokenKind.BOOL, "false", 0)),
    )
    local = Let(token=tok(TokenKind.IDENT, "c"), kind=LetKind.LOCAL, assign=cond)
    ir = emit_program(checked(function("main", local)))
    lines = ir.splitlines()
    assert any("phi i1 [ 0, " in line for line in lines)
    for label in ("L0:", "L1:", "L2:"):
        assert label in lines


def test_widening_signed_cast_uses_sext():
    local = Let(token=tok(TokenKind.IDENT, "x"), kind=LetKind.LOCAL, def_type=type_name("i32"), assign=integer(5))
    cast = Binary(token=tok(TokenKind.AS, "as"), lhs=ident("x"), rhs=type_name("i64"))
    ir = emit_program(checked(function("main", local, debug_print(cast))))
    assert any(line.strip().endswith("to i64") and "sext i32" in line for line in ir.splitlines())
    assert "store i32 5, i32*" in ir


def test_compile_program_writes_ir_and_links(tmp_path):
    exe = tmp_path / "prog"
    with mock.patch("yozi.compiler.subprocess.run") as run:
        run.return_value = mock.Mock(returncode=0)
        asm = compile_program(checked(function("main")), exe)
    assert asm == tmp_path / "prog.ll"
    assert "call void @.main()" in asm.read_text()
    run.assert_called_once_with(["clang", "-Wno-override-module", "-o", str(exe), str(asm)])


def test_compile_program_reports_linker_failure(tmp_path):
    with mock.patch("yozi.compiler.subprocess.run") as run:
        run.return_value = mock.Mock(returncode=1)
        with pytest.raises(CompileError, match="exit status 1"):
            compile_program(checked(function("main")), tmp_path / "prog")